"""
Selector Preset Store
=====================

Quick import keeps one selector preset per domain. The store is an
explicit collaborator handed to the batch orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from content_importer.core.schema import SelectorPreset
from content_importer.db.repositories import SelectorPresetRepository


def domain_of(url: str) -> str:
    """Lowercased host (with port) of a URL."""
    return urlparse(url.strip()).netloc.lower()


class PresetStore(ABC):
    """Abstract preset repository keyed by domain."""

    @abstractmethod
    def save(self, preset: SelectorPreset) -> SelectorPreset:
        """Insert or replace the preset for its domain."""
        pass

    @abstractmethod
    def find_by_domain(self, domain: str) -> SelectorPreset | None:
        pass

    @abstractmethod
    def list_all(self) -> list[SelectorPreset]:
        pass

    @abstractmethod
    def delete(self, domain: str) -> bool:
        pass

    def find_for_url(self, url: str) -> SelectorPreset | None:
        """Find the preset for a URL's domain."""
        return self.find_by_domain(domain_of(url))


class InMemoryPresetStore(PresetStore):
    """Process-local preset store."""

    def __init__(self, presets: list[SelectorPreset] | None = None) -> None:
        self._presets: dict[str, SelectorPreset] = {}
        for preset in presets or []:
            self.save(preset)

    def save(self, preset: SelectorPreset) -> SelectorPreset:
        stored = preset.model_copy(update={"domain": preset.domain.lower()})
        self._presets[stored.domain] = stored
        return stored

    def find_by_domain(self, domain: str) -> SelectorPreset | None:
        return self._presets.get(domain.lower())

    def list_all(self) -> list[SelectorPreset]:
        return sorted(self._presets.values(), key=lambda p: p.domain)

    def delete(self, domain: str) -> bool:
        return self._presets.pop(domain.lower(), None) is not None


class SqlPresetStore(PresetStore):
    """Preset store backed by the ``selector_presets`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save(self, preset: SelectorPreset) -> SelectorPreset:
        with self._session_factory() as session:
            stored = SelectorPresetRepository(session).save(preset)
            session.commit()
            return stored

    def find_by_domain(self, domain: str) -> SelectorPreset | None:
        with self._session_factory() as session:
            return SelectorPresetRepository(session).find_by_domain(domain)

    def list_all(self) -> list[SelectorPreset]:
        with self._session_factory() as session:
            return SelectorPresetRepository(session).list_all()

    def delete(self, domain: str) -> bool:
        with self._session_factory() as session:
            deleted = SelectorPresetRepository(session).delete(domain)
            session.commit()
            return deleted

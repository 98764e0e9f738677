"""
Selector Helpers
================

CSS selection over BeautifulSoup documents, extended with a trailing
``::attr(name)`` suffix that reads an attribute instead of the node's
text or HTML (e.g. ``meta[property='og:image']::attr(content)``).
"""

from __future__ import annotations

import re

import soupsieve
from bs4 import BeautifulSoup, Tag

_ATTR_SUFFIX_RE = re.compile(r"::attr\(\s*['\"]?([^'\")]+?)['\"]?\s*\)\s*$")


def split_attr_selector(selector: str) -> tuple[str, str | None]:
    """
    Split ``css::attr(name)`` into ``("css", "name")``.

    Selectors without the suffix return ``(selector, None)``.
    """
    selector = selector.strip()
    match = _ATTR_SUFFIX_RE.search(selector)
    if not match:
        return selector, None
    return selector[: match.start()].strip(), match.group(1).strip()


def selector_error(selector: str) -> str | None:
    """
    Syntax-check a selector without touching the network.

    Returns:
        An error message, or None if the selector compiles.
    """
    css, _ = split_attr_selector(selector)
    if not css:
        return f"Selector '{selector}' is empty"
    try:
        soupsieve.compile(css)
    except soupsieve.SelectorSyntaxError as e:
        return f"Invalid selector '{selector}': {e}"
    return None


def parse_html(html: str) -> BeautifulSoup:
    """Parse an HTML document."""
    return BeautifulSoup(html, "html.parser")


def select_all(root: BeautifulSoup | Tag, selector: str) -> list[Tag]:
    """All nodes matching the CSS part of ``selector``, in document order."""
    css, _ = split_attr_selector(selector)
    if not css:
        return []
    return root.select(css)


def select_first(root: BeautifulSoup | Tag, selector: str) -> Tag | None:
    css, _ = split_attr_selector(selector)
    if not css:
        return None
    return root.select_one(css)


def node_text(node: Tag) -> str:
    """Text of a node with whitespace runs collapsed."""
    return " ".join(node.get_text(" ").split())


def read_attr(node: Tag, name: str) -> str:
    value = node.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return (value or "").strip()


def select_value(root: BeautifulSoup | Tag, selector: str) -> str:
    """
    Read the first match of a selector as a string.

    With an ``::attr()`` suffix the attribute value of the first node
    carrying it is returned; otherwise the node's normalized text.
    """
    _, attr = split_attr_selector(selector)
    for node in select_all(root, selector):
        if attr is None:
            return node_text(node)
        value = read_attr(node, attr)
        if value:
            return value
    return ""

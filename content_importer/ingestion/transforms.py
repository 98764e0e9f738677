"""
Transform Pipeline Module
=========================

Applies an ordered chain of string-to-string normalization steps to an
extracted value. A step that fails or does not apply is logged and
skipped; the chain always runs to the end.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable, Sequence

from content_importer.core.errors import TransformStepError
from content_importer.core.schema import (
    AddPrefixTransform,
    AddSuffixTransform,
    DecodeHtmlTransform,
    FormatPriceTransform,
    MaxLengthTransform,
    RegexTransform,
    RemoveEmptyTagsTransform,
    RemoveNonDigitTransform,
    ReplaceTransform,
    StripTagsTransform,
    ToLowerTransform,
    ToNumberTransform,
    ToUpperTransform,
    Transform,
    TrimTransform,
)

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_EMPTY_TAG_RE = re.compile(r"<(\w+)[^>]*>\s*</\1>")
_NUMERIC_RESIDUE_RE = re.compile(r"[^\d.\-]")
_FLOAT_PREFIX_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)")
_JS_REPLACEMENT_RE = re.compile(r"\$(\$|&|\d{1,2})")

_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
}


def parse_number(value: str) -> float:
    """
    Best-effort numeric parse.

    Everything except digits, ``.`` and ``-`` is removed, then the longest
    leading float is read. No leading number yields 0.

    Examples:
        >>> parse_number("Giá: 199.5đ")
        199.5
        >>> parse_number("liên hệ")
        0.0
    """
    cleaned = _NUMERIC_RESIDUE_RE.sub("", value)
    match = _FLOAT_PREFIX_RE.match(cleaned)
    if not match:
        return 0.0
    return float(match.group(0))


def format_number(number: float) -> str:
    """Render a float without a trailing ``.0`` for integral values."""
    if number.is_integer():
        return str(int(number))
    return repr(number)


def format_price(value: str, suffix: str = "đ", separator: str = ".") -> str:
    """
    Format a value as a vi-VN style price.

    Thousands are grouped with ``separator``; up to three fraction digits
    are kept after a ``,`` (or ``.`` when the separator is a comma).

    Examples:
        >>> format_price("1234567")
        '1.234.567đ'
    """
    number = round(parse_number(value), 3)
    decimal_mark = "." if separator == "," else ","
    sign = "-" if number < 0 else ""
    integral, _, fraction = f"{abs(number):.3f}".partition(".")
    fraction = fraction.rstrip("0")

    groups = []
    while len(integral) > 3:
        groups.insert(0, integral[-3:])
        integral = integral[:-3]
    groups.insert(0, integral)

    rendered = sign + separator.join(groups)
    if fraction:
        rendered += decimal_mark + fraction
    return rendered + suffix


def _expand_js_replacement(template: str, match: re.Match[str]) -> str:
    """Expand ``$1``, ``$&`` and ``$$`` references in a replacement string."""

    def substitute(ref: re.Match[str]) -> str:
        token = ref.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return match.group(0)
        index = int(token)
        if index == 0 or index > (match.re.groups or 0):
            return ref.group(0)
        return match.group(index) or ""

    return _JS_REPLACEMENT_RE.sub(substitute, template)


def _apply_regex(value: str, step: RegexTransform) -> str:
    if not step.pattern:
        raise TransformStepError("regex pattern is empty")

    flags = 0
    global_replace = False
    for flag in step.flags:
        if flag == "g":
            global_replace = True
        elif flag in _REGEX_FLAGS:
            flags |= _REGEX_FLAGS[flag]
        else:
            raise TransformStepError(f"unsupported regex flag '{flag}'")

    try:
        compiled = re.compile(step.pattern, flags)
    except re.error as e:
        raise TransformStepError(f"invalid regex '{step.pattern}': {e}") from e

    return compiled.sub(
        lambda m: _expand_js_replacement(step.replace, m),
        value,
        count=0 if global_replace else 1,
    )


def _apply_replace(value: str, step: ReplaceTransform) -> str:
    if not step.find:
        raise TransformStepError("replace has no search text")
    return value.replace(step.find, step.replace)


def _apply_max_length(value: str, step: MaxLengthTransform) -> str:
    if len(value) > step.max:
        return value[: step.max] + step.ellipsis
    return value


_HANDLERS: dict[type, Callable[[str, Transform], str]] = {
    TrimTransform: lambda v, s: v.strip(),
    ReplaceTransform: _apply_replace,
    RegexTransform: _apply_regex,
    ToNumberTransform: lambda v, s: format_number(parse_number(v)),
    RemoveNonDigitTransform: lambda v, s: re.sub(r"\D", "", v),
    StripTagsTransform: lambda v, s: _TAG_RE.sub("", v),
    MaxLengthTransform: _apply_max_length,
    AddPrefixTransform: lambda v, s: s.prefix + v,
    AddSuffixTransform: lambda v, s: v + s.suffix,
    ToLowerTransform: lambda v, s: v.lower(),
    ToUpperTransform: lambda v, s: v.upper(),
    RemoveEmptyTagsTransform: lambda v, s: _EMPTY_TAG_RE.sub("", v),
    DecodeHtmlTransform: lambda v, s: html.unescape(v),
    FormatPriceTransform: lambda v, s: format_price(v, s.suffix, s.separator),
}


def apply_transform(value: str, step: Transform) -> str:
    """
    Apply one transform step.

    Raises:
        TransformStepError: The step is inapplicable or failed.
    """
    handler = _HANDLERS.get(type(step))
    if handler is None:
        raise TransformStepError(f"unknown transform '{getattr(step, 'type', step)}'")
    try:
        return handler(value, step)
    except TransformStepError:
        raise
    except Exception as e:
        raise TransformStepError(f"{step.type} failed: {e}") from e


def apply_transforms(value: str, transforms: Sequence[Transform]) -> str:
    """
    Apply an ordered transform chain.

    A failing step is skipped and the chain continues with the value it
    received.

    Args:
        value: Raw extracted value.
        transforms: Steps to apply in order.

    Returns:
        The transformed value.
    """
    result = value
    for step in transforms:
        try:
            result = apply_transform(result, step)
        except TransformStepError as e:
            logger.warning(f"Skipping transform '{step.type}': {e}")
    return result

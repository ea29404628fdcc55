"""Content sanitization for dashboard context and model output.

Two passes are provided:

* ``strip_markup`` removes every tag (and script bodies, ``javascript:``
  schemes and inline event handlers) from host-platform text before it is
  placed in an outbound prompt.
* ``render_safe`` keeps a small set of harmless inline tags, with no
  attributes, and is applied to model text before display.

Both are idempotent: feeding their output back in returns it unchanged.
"""

import html
import re
from typing import Any, FrozenSet

from bs4 import BeautifulSoup
from bs4.element import PreformattedString

METADATA_STRING_LIMIT = 1000
MESSAGE_LIMIT = 10000
LIST_LIMIT = 100

ALLOWED_TAGS: FrozenSet[str] = frozenset(
    ["b", "i", "em", "strong", "u", "br", "p", "code", "pre", "blockquote"]
)

# Dropped together with everything inside them.
FORBIDDEN_TAGS: FrozenSet[str] = frozenset(
    [
        "script",
        "object",
        "embed",
        "iframe",
        "form",
        "input",
        "textarea",
        "select",
        "option",
        "style",
    ]
)

ALLOWED_ATTRS: FrozenSet[str] = frozenset()

FORBIDDEN_ATTRS: FrozenSet[str] = frozenset(
    ["onerror", "onload", "onclick", "onmouseover", "onfocus", "onblur", "style"]
)

_STRIP_PATTERNS = (
    re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<[^>]*script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<\s*/?[^>]*>"),
)

_MAX_RENDER_PASSES = 4


def strip_markup(text: str, limit: int = METADATA_STRING_LIMIT) -> str:
    """Remove all markup from ``text`` and cap it at ``limit`` characters.

    The removal patterns are applied repeatedly until none of them matches,
    so fragments that reassemble into a pattern after one removal are caught
    as well.
    """
    current = text
    while True:
        stripped = current
        for pattern in _STRIP_PATTERNS:
            stripped = pattern.sub("", stripped)
        if stripped == current:
            break
        current = stripped
    return current[:limit]


def strip_tree(value: Any, limit: int = METADATA_STRING_LIMIT) -> Any:
    """Apply ``strip_markup`` to every string in a decoded JSON document.

    Mappings keep their structure, lists are capped at ``LIST_LIMIT`` items,
    and other scalars pass through unchanged.
    """
    if isinstance(value, str):
        return strip_markup(value, limit)
    if isinstance(value, list):
        return [strip_tree(item, limit) for item in value[:LIST_LIMIT]]
    if isinstance(value, dict):
        return {key: strip_tree(item, limit) for key, item in value.items()}
    return value


def _render_once(text: str) -> str:
    soup = BeautifulSoup(text, "html.parser")

    for node in soup.find_all(string=lambda s: isinstance(s, PreformattedString)):
        node.extract()

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name in FORBIDDEN_TAGS:
            tag.decompose()
        elif tag.name in ALLOWED_TAGS:
            tag.attrs = {
                name: value
                for name, value in tag.attrs.items()
                if name in ALLOWED_ATTRS and name not in FORBIDDEN_ATTRS
            }
        else:
            tag.unwrap()

    return str(soup)


def _render(text: str) -> str:
    current = text
    for _ in range(_MAX_RENDER_PASSES):
        rendered = _render_once(current)
        if rendered == current:
            return rendered
        current = rendered
    # Output that keeps changing when re-parsed is not trusted as markup.
    plain = BeautifulSoup(current, "html.parser").get_text()
    return html.escape(plain, quote=False)


def render_safe(text: str, limit: int = MESSAGE_LIMIT) -> str:
    """Reduce ``text`` to allowlisted markup and cap it at ``limit`` characters.

    The rendered markup is re-parsed until it is stable, so the returned
    string is exactly what a second call would produce. When the result is
    too long the input is cut and rendered again, which closes any tag the
    cut left open instead of emitting a dangling fragment.
    """
    rendered = _render(text)
    if len(rendered) <= limit:
        return rendered

    cut = limit
    while cut > 0:
        candidate = _render(rendered[:cut])
        if len(candidate) <= limit:
            return candidate
        cut -= len(candidate) - limit
    return ""

from __future__ import annotations

import math
import re
from numbers import Real
from typing import Iterator

from linkworkers.lib.host_safety import is_allowed_url
from linkworkers.lib.link_defaults import DEFAULT_MAX_LINKS

# ECMAScript whitespace. Python's \s would also split on \x1c-\x1f and \x85,
# and would not split on \ufeff.
_WHITESPACE = (
    "\t\n\v\f\r \u00a0\u1680"
    + "".join(chr(c) for c in range(0x2000, 0x200B))
    + "\u2028\u2029\u202f\u205f\u3000\ufeff"
)
_NON_SPACE = f"[^{re.escape(_WHITESPACE)}]"

# [label](http(s)://target) -- removed wholesale so neither part is scanned.
_MARKDOWN_LINK_RE = re.compile(rf"\[[^\]]*\]\((https?://{_NON_SPACE}+?)\)", re.IGNORECASE)
# Bare links run until the next whitespace character.
_BARE_URL_RE = re.compile(rf"https?://{_NON_SPACE}+", re.IGNORECASE)


def strip_markdown_links(text: str) -> str:
    """Replace every markdown link with a single space."""
    return _MARKDOWN_LINK_RE.sub(" ", text or "")


def iter_candidate_urls(text: str) -> Iterator[str]:
    """
    Yield raw URL-shaped substrings from `text`, left to right.

    Markdown links are stripped first, so a link that only appears as
    [label](url) is never yielded.
    """
    for match in _BARE_URL_RE.finditer(strip_markdown_links(text)):
        yield match.group(0)


def resolve_max_links(value=None) -> int:
    if isinstance(value, Real) and not isinstance(value, bool):
        if math.isfinite(value) and value > 0:
            return math.floor(value)
    return DEFAULT_MAX_LINKS


def extract_links_from_message(message, *, max_links=None) -> list[str]:
    """
    Extract up to `max_links` distinct, safe http(s) URLs from a chat message.

    - Markdown links are ignored; only bare URLs count
    - Loopback / private / link-local / CGNAT hosts are dropped
    - Order is first appearance in the message

    Never raises; anything that is not usable text yields [].
    """
    if not isinstance(message, str):
        return []
    source = message.strip(_WHITESPACE)
    if not source:
        return []

    limit = resolve_max_links(max_links)
    if limit < 1:
        return []

    seen = set()
    links: list[str] = []
    for candidate in iter_candidate_urls(source):
        raw = candidate.strip(_WHITESPACE)
        if not raw:
            continue
        if not is_allowed_url(raw):
            continue
        if raw in seen:
            continue
        seen.add(raw)
        links.append(raw)
        if len(links) >= limit:
            break
    return links


__all__ = [
    "extract_links_from_message",
    "iter_candidate_urls",
    "resolve_max_links",
    "strip_markdown_links",
]

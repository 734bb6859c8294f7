"""
Host safety checks for links pulled out of chat messages.

A link is only handed downstream (unfurl / fetch / preview) when it is an
absolute http(s) URL whose host is not loopback, private, link-local (cloud
metadata) or carrier-grade NAT. The check is purely syntactic: nothing here
resolves DNS or touches the network.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Callable, NamedTuple, Optional, Tuple
from urllib.parse import unquote, urlsplit

import idna

REJECT_INVALID_URL = "invalid_url"
REJECT_BAD_SCHEME = "bad_scheme"
REJECT_MISSING_HOST = "missing_host"
REJECT_BLOCKED_HOST = "blocked_host"
REJECT_INTERNAL_ERROR = "internal_error"

_ALLOWED_SCHEMES = {"http", "https"}
_SCHEME_RE = re.compile(r"([A-Za-z][A-Za-z0-9+.\-]*):")
_OCTET_RE = re.compile(r"[0-9]{1,3}")
_DIGITS_RE = re.compile(r"[0-9]+")
_HEX_RE = re.compile(r"[0-9a-fA-F]*")
_OCTAL_RE = re.compile(r"[0-7]*")

# Code points that can never appear in a URL host once it is percent-decoded.
_FORBIDDEN_HOST_CHARS = frozenset(
    "\x00\t\n\r #/:<>?@[\\]^|%\x7f" + "".join(chr(c) for c in range(0x20))
)
_ACE_PREFIX = "xn--"


class LinkVerdict(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    host: Optional[str] = None


Quad = Optional[Tuple[int, int, int, int]]


class HostRule(NamedTuple):
    name: str
    description: str
    matches: Callable[[str, Quad], bool]


def _dotted_quad(host: str) -> Quad:
    """Four groups of 1-3 ASCII digits -> octet tuple, else None (octets may exceed 255)."""
    parts = host.split(".")
    if len(parts) != 4 or not all(_OCTET_RE.fullmatch(p) for p in parts):
        return None
    a, b, c, d = (int(p) for p in parts)
    return a, b, c, d


def _in_range(quad: Quad, first: int, low: Optional[int] = None, high: Optional[int] = None) -> bool:
    if quad is None or quad[0] != first:
        return False
    if low is None:
        return True
    return low <= quad[1] <= (high if high is not None else low)


# Evaluated in order; the first match blocks the host.
HOST_RULES: Tuple[HostRule, ...] = (
    HostRule(
        "loopback_name",
        "localhost hostnames",
        lambda host, quad: host in ("localhost", "localhost.localdomain"),
    ),
    HostRule(
        "ipv6_loopback",
        "IPv6 loopback ::1",
        lambda host, quad: host in ("::1", "0:0:0:0:0:0:0:1"),
    ),
    HostRule("unspecified", "0.0.0.0", lambda host, quad: host == "0.0.0.0"),
    HostRule(
        "invalid_ipv4",
        "dotted quad with an octet above 255",
        lambda host, quad: quad is not None and max(quad) > 255,
    ),
    HostRule("loopback", "127.0.0.0/8", lambda host, quad: _in_range(quad, 127)),
    HostRule("private_10", "10.0.0.0/8", lambda host, quad: _in_range(quad, 10)),
    HostRule("private_172", "172.16.0.0/12", lambda host, quad: _in_range(quad, 172, 16, 31)),
    HostRule("private_192", "192.168.0.0/16", lambda host, quad: _in_range(quad, 192, 168)),
    HostRule(
        "link_local",
        "169.254.0.0/16 (includes cloud metadata 169.254.169.254)",
        lambda host, quad: _in_range(quad, 169, 254),
    ),
    HostRule("cgnat", "100.64.0.0/10 shared address space", lambda host, quad: _in_range(quad, 100, 64, 127)),
)


def blocked_host_rule(hostname: str) -> Optional[str]:
    """
    Return the name of the first rule in HOST_RULES that blocks `hostname`,
    or None when the host is acceptable. Brackets around IPv6 literals are
    ignored and matching is case-insensitive.
    """
    host = hostname or ""
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    host = host.lower()

    quad = _dotted_quad(host)
    for rule in HOST_RULES:
        if rule.matches(host, quad):
            return rule.name
    return None


def is_blocked_host(hostname: str) -> bool:
    return blocked_host_rule(hostname) is not None


# ------------------------------------------------------------------
# URL parsing


def _ipv4_number(part: str) -> int:
    radix = 10
    if part[:2] in ("0x", "0X"):
        radix, part = 16, part[2:]
        pattern = _HEX_RE
    elif len(part) > 1 and part.startswith("0"):
        radix, part = 8, part[1:]
        pattern = _OCTAL_RE
    else:
        pattern = _DIGITS_RE
    if not part:
        return 0
    if not pattern.fullmatch(part):
        raise ValueError(f"invalid IPv4 number: {part!r}")
    return int(part, radix)


def _ends_in_number(parts: list) -> bool:
    last = parts[-1]
    if _DIGITS_RE.fullmatch(last):
        return True
    if last[:2] in ("0x", "0X") and _HEX_RE.fullmatch(last[2:]):
        return True
    return False


def _canonical_ipv4(host: str) -> Optional[str]:
    """
    Rewrite numeric host shorthands (2130706433, 0x7f.1, 0177.0.0.1, 127.1)
    into dotted-quad form. Returns None for ordinary domain names and raises
    ValueError for hosts that look numeric but are not a valid IPv4 address.
    """
    parts = host.split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts = parts[:-1]
    if not parts[-1] or not _ends_in_number(parts):
        return None
    if len(parts) > 4 or any(p == "" for p in parts):
        raise ValueError(f"invalid IPv4 host: {host!r}")

    numbers = [_ipv4_number(p) for p in parts]
    if any(n > 255 for n in numbers[:-1]):
        raise ValueError(f"invalid IPv4 host: {host!r}")
    if numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError(f"invalid IPv4 host: {host!r}")

    value = numbers[-1]
    for index, n in enumerate(numbers[:-1]):
        value += n * 256 ** (3 - index)
    return str(ipaddress.IPv4Address(value))


def _canonical_ipv6(literal: str) -> str:
    if "%" in literal:
        raise ValueError("zone identifiers are not allowed in URL hosts")
    return ipaddress.IPv6Address(literal).compressed


def _to_ascii_label(label: str) -> str:
    # ASCII labels other than A-labels are kept as-is (underscores included).
    if label.isascii() and not label.startswith(_ACE_PREFIX):
        return label
    return idna.alabel(label).decode("ascii")


def _canonical_domain(host: str) -> str:
    host = unquote(host)
    try:
        host = idna.uts46_remap(host, std3_rules=False, transitional=False)
        host = ".".join(_to_ascii_label(label) for label in host.split("."))
    except (idna.IDNAError, UnicodeError) as exc:
        raise ValueError(f"invalid international host: {host!r}") from exc
    host = host.lower()
    if any(ch in _FORBIDDEN_HOST_CHARS for ch in host):
        raise ValueError(f"forbidden character in host: {host!r}")
    if not host:
        return host
    return _canonical_ipv4(host) or host


def _check_port(port: str) -> None:
    if not port:
        return
    if not _DIGITS_RE.fullmatch(port) or int(port) > 65535:
        raise ValueError(f"invalid port: {port!r}")


def parse_host(raw: str) -> Tuple[str, str]:
    """
    Split an absolute URL into (scheme, canonical host).

    Raises ValueError when `raw` is not a well-formed absolute URL. The host
    comes back lowercased, percent-decoded, with IPv4 shorthands expanded and
    IPv6 literals compressed (without brackets).
    """
    match = _SCHEME_RE.match(raw or "")
    if not match:
        raise ValueError("missing URL scheme")
    scheme = match.group(1).lower()

    # http(s) treat backslashes as slashes and skip any run of them before the authority.
    rest = raw[match.end():].replace("\\", "/").lstrip("/")
    netloc = urlsplit(f"{scheme}://{rest}").netloc
    hostport = netloc.rpartition("@")[2]

    if hostport.startswith("["):
        literal, closed, tail = hostport[1:].partition("]")
        if not closed or (tail and not tail.startswith(":")):
            raise ValueError(f"malformed IPv6 host: {hostport!r}")
        _check_port(tail[1:])
        return scheme, _canonical_ipv6(literal)

    host, _, port = hostport.partition(":")
    _check_port(port)
    return scheme, _canonical_domain(host)


def _classify(raw: str) -> LinkVerdict:
    if not isinstance(raw, str):
        return LinkVerdict(False, REJECT_INVALID_URL)

    try:
        scheme, host = parse_host(raw)
    except ValueError:
        return LinkVerdict(False, REJECT_INVALID_URL)

    if scheme not in _ALLOWED_SCHEMES:
        return LinkVerdict(False, REJECT_BAD_SCHEME)
    if not host:
        return LinkVerdict(False, REJECT_MISSING_HOST)
    if is_blocked_host(host):
        return LinkVerdict(False, REJECT_BLOCKED_HOST, host)
    return LinkVerdict(True, None, host)


def classify_url(raw: str) -> LinkVerdict:
    """
    Decide whether `raw` is safe to treat as an external link.

    Never raises: malformed URLs and unexpected faults come back as a
    rejected verdict carrying one of the REJECT_* reasons.
    """
    try:
        return _classify(raw)
    except Exception:  # noqa: BLE001
        return LinkVerdict(False, REJECT_INTERNAL_ERROR)


def is_allowed_url(raw: str) -> bool:
    return classify_url(raw).allowed


__all__ = [
    "HOST_RULES",
    "HostRule",
    "LinkVerdict",
    "REJECT_BAD_SCHEME",
    "REJECT_BLOCKED_HOST",
    "REJECT_INTERNAL_ERROR",
    "REJECT_INVALID_URL",
    "REJECT_MISSING_HOST",
    "blocked_host_rule",
    "classify_url",
    "is_allowed_url",
    "is_blocked_host",
    "parse_host",
]

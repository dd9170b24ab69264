"""Route and request attribute matching."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}


@dataclass(frozen=True, slots=True)
class LiteralEntry:
    value: str


@dataclass(frozen=True, slots=True)
class PatternEntry:
    regex: re.Pattern[str]


MatchEntry = LiteralEntry | PatternEntry


def _compile_mapping(item: dict) -> PatternEntry:
    raw = item.get("regex")
    if not isinstance(raw, str) or not raw:
        raise ValueError("pattern entry requires a non-empty 'regex'")
    flags = 0
    for flag in str(item.get("flags") or ""):
        if flag not in _FLAG_MAP:
            raise ValueError(f"unsupported regex flag: {flag}")
        flags |= _FLAG_MAP[flag]
    try:
        return PatternEntry(re.compile(raw, flags))
    except re.error as exc:
        raise ValueError(f"invalid regex {raw!r}: {exc}") from exc


def build_entries(raw: object) -> tuple[MatchEntry, ...]:
    """Normalize configured literals/patterns into match entries.

    Accepts strings, compiled patterns, ``{"regex": ..., "flags": ...}``
    mappings and arbitrarily nested lists of those.
    """
    if raw is None:
        return ()
    if isinstance(raw, (str, re.Pattern, dict, LiteralEntry, PatternEntry)):
        raw = [raw]
    if not isinstance(raw, Iterable):
        raise ValueError(f"expected a list of routes or patterns, got {type(raw).__name__}")

    entries: list[MatchEntry] = []
    for item in raw:
        if isinstance(item, (LiteralEntry, PatternEntry)):
            entries.append(item)
        elif isinstance(item, str):
            entries.append(LiteralEntry(item))
        elif isinstance(item, re.Pattern):
            entries.append(PatternEntry(item))
        elif isinstance(item, dict):
            entries.append(_compile_mapping(item))
        elif isinstance(item, (list, tuple)):
            entries.extend(build_entries(item))
        else:
            raise ValueError(f"unsupported match entry: {item!r}")
    return tuple(entries)


def build_networks(raw: object) -> tuple[IPNetwork, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    networks: list[IPNetwork] = []
    for item in raw:
        try:
            networks.append(ipaddress.ip_network(str(item).strip(), strict=False))
        except ValueError as exc:
            raise ValueError(f"invalid ip range {item!r}: {exc}") from exc
    return tuple(networks)


def find_match(entries: Sequence[MatchEntry], value: str, *, ignore_case: bool = False) -> MatchEntry | None:
    if not entries or value is None:
        return None
    folded = value.casefold() if ignore_case else value
    for entry in entries:
        if isinstance(entry, LiteralEntry):
            candidate = entry.value.casefold() if ignore_case else entry.value
            if candidate == folded:
                return entry
        elif isinstance(entry, PatternEntry):
            regex = entry.regex
            if ignore_case and not regex.flags & re.IGNORECASE:
                regex = re.compile(regex.pattern, regex.flags | re.IGNORECASE)
            if regex.search(value):
                return entry
    return None


def matches(entries: Sequence[MatchEntry], value: str, *, ignore_case: bool = False) -> bool:
    return find_match(entries, value, ignore_case=ignore_case) is not None


def match_ip(networks: Sequence[IPNetwork], ip: str) -> IPNetwork | None:
    if not networks or not ip:
        return None
    normalized = ip.strip()
    if normalized.startswith("[") and normalized.endswith("]"):
        normalized = normalized[1:-1]
    try:
        address = ipaddress.ip_address(normalized)
    except ValueError:
        return None
    for network in networks:
        if address.version == network.version and address in network:
            return network
    return None

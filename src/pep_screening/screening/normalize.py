"""Group raw screening matches into one summary per person or entity."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

# Word characters are ASCII-only so accented letters are dropped, not kept.
_WHITESPACE = re.compile(r"\s+", re.ASCII)
_PUNCTUATION = re.compile(r"[^\w\s]", re.ASCII)
_SUFFIXES = re.compile(r"\b(?:jr|sr|iii?|iv)\b", re.ASCII)

_PASSTHROUGH_FIELDS = (
    "source_type",
    "pep_type",
    "gender",
    "date_of_birth",
    "citizenship",
    "jurisdiction",
    "address",
    "sanction_details",
)


def normalize_name(name: object) -> str:
    """Return the grouping key for a record name.

    ``"Mr. John Smith Jr."`` becomes ``"mr john smith"``; missing or
    non-string names become ``""``.
    """
    if not isinstance(name, str) or not name:
        return ""
    normalized = _WHITESPACE.sub(" ", name.lower())
    normalized = _PUNCTUATION.sub("", normalized).strip()
    normalized = _SUFFIXES.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


@dataclass(frozen=True)
class MatchSummary:
    """One person or entity assembled from every record sharing a name key.

    Attributes:
        name: Display name taken from the first record of the group.
        sources: Unique source ids in the order they were first seen.
        total_records: Number of raw records in the group.
        raw_records: The grouped records, untouched.
    """

    name: object
    source_type: object
    pep_type: object
    gender: object
    date_of_birth: object
    citizenship: object
    jurisdiction: object
    address: object
    sanction_details: object
    sources: tuple[object, ...]
    total_records: int
    raw_records: tuple[Mapping[str, object], ...]

    def to_dict(self) -> dict[str, object]:
        """Return the plain mapping shape used by JSON consumers."""
        return {
            "name": self.name,
            "source_type": self.source_type,
            "pep_type": self.pep_type,
            "gender": self.gender,
            "date_of_birth": self.date_of_birth,
            "citizenship": self.citizenship,
            "jurisdiction": self.jurisdiction,
            "address": self.address,
            "sanction_details": self.sanction_details,
            "sources": list(self.sources),
            "total_records": self.total_records,
            "raw_records": [dict(record) for record in self.raw_records],
        }


def _summarize(records: list[Mapping[str, object]]) -> MatchSummary:
    primary = records[0]
    sources: list[object] = []
    for record in records:
        source_id = record.get("source_id")
        if source_id is not None and source_id not in sources:
            sources.append(source_id)
    return MatchSummary(
        name=primary.get("name"),
        **{field: primary.get(field) for field in _PASSTHROUGH_FIELDS},
        sources=tuple(sources),
        total_records=len(records),
        raw_records=tuple(records),
    )


def normalize_response(
    total_hits: int,
    records: Iterable[Mapping[str, object]] | None,
) -> list[MatchSummary]:
    """Group ``records`` by normalized name, keeping first-seen order.

    A response with ``total_hits == 0`` yields ``[]`` without looking at
    ``records``.
    """
    if total_hits == 0:
        return []
    groups: dict[str, list[Mapping[str, object]]] = {}
    for record in records or ():
        groups.setdefault(normalize_name(record.get("name")), []).append(record)
    return [_summarize(group) for group in groups.values()]

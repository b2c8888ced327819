from collections.abc import Iterable
from typing import Any


def parse_tag_list(raw_tags: str | None) -> list[str]:
    if not raw_tags:
        return []
    return normalize_tags(raw_tags.split(","))


def normalize_tags(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return parse_tag_list(value)
    if not isinstance(value, Iterable):
        return []
    tags: list[str] = []
    seen = set()
    for item in value:
        tag = str(item).strip()
        if tag and tag.lower() not in seen:
            tags.append(tag)
            seen.add(tag.lower())
    return tags


def union_tags(*tag_sets: Iterable[str]) -> frozenset[str]:
    merged: list[str] = []
    for tags in tag_sets:
        merged.extend(tags)
    return frozenset(normalize_tags(merged))

from __future__ import annotations

from collections.abc import Iterable, Mapping
from urllib.parse import urlsplit

from tidymarks.models import DuplicateGroup, DuplicateItem, FlatBookmark


def normalize_url(url: str) -> str:
    """Duplicate key for ``url``: lower-cased host plus path, query and fragment dropped."""
    if not url:
        return ""
    value = url.strip()
    try:
        parsed = urlsplit(value)
        hostname = parsed.hostname or ""
    except ValueError:
        return value.lower()
    if not parsed.scheme:
        return value.lower()

    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return f"{hostname.lower()}{path}"


def build_duplicate_groups(items: Iterable[FlatBookmark]) -> list[DuplicateGroup]:
    groups: dict[str, list[DuplicateItem]] = {}

    for item in items:
        if not item.url:
            continue
        normalized = normalize_url(item.url)
        if not normalized:
            continue
        groups.setdefault(normalized, []).append(
            DuplicateItem(
                id=item.id,
                title=item.title,
                url=item.url,
                path=item.path,
                normalized=normalized,
            )
        )

    duplicates = [
        DuplicateGroup(key=key, items=tuple(entries))
        for key, entries in groups.items()
        if len(entries) > 1
    ]
    duplicates.sort(key=lambda group: len(group.items), reverse=True)
    return duplicates


def reconcile_selections(
    groups: Iterable[DuplicateGroup], previous: Mapping[str, str]
) -> dict[str, str]:
    """Keep a prior "keep" choice while it is still in its group, else the first item."""
    selections: dict[str, str] = {}
    for group in groups:
        existing = previous.get(group.key)
        ids = group.item_ids()
        if existing and existing in ids:
            selections[group.key] = existing
        elif ids:
            selections[group.key] = ids[0]
    return selections


def ids_to_remove(group: DuplicateGroup, keep_id: str) -> set[str]:
    if keep_id not in group.item_ids():
        return set()
    return {item.id for item in group.items if item.id != keep_id}

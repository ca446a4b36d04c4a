"""Folder merge suggestions.

Folder titles are reduced to a normalized string and a token set.  Folders
that share an index key (a token, or the leading characters of a long token)
are scored pairwise; pairs at or above :data:`SIMILARITY_THRESHOLD` are joined
with union-find, and each resulting cluster proposes merging its members into
the shallowest, largest folder.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping

from tidymarks.models import (
    Folder,
    FolderInfo,
    FolderStats,
    MergeSource,
    MergeSuggestion,
    ROOT_ID,
)

SIMILARITY_THRESHOLD = 0.6
SUBSTRING_SCORE = 0.85
MAX_SUGGESTIONS = 20
INDEX_PREFIX_LENGTH = 5

STOPWORDS = frozenset(
    {
        "the", "and", "for", "with", "from", "into", "about", "this", "that",
        "todo", "para", "con", "por", "los", "las", "una", "uno", "del",
        "la", "el", "de", "y", "en",
    }
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", stripped.lower()).strip()


def tokenize_name(value: str) -> frozenset[str]:
    return frozenset(
        token
        for token in normalize_text(value).split(" ")
        if len(token) >= 2 and token not in STOPWORDS
    )


def list_folder_infos(root: Folder) -> list[FolderInfo]:
    items: list[FolderInfo] = []

    def walk(folder: Folder, path_titles: tuple[str, ...], path_ids: tuple[str, ...]):
        if folder.id != ROOT_ID:
            items.append(
                FolderInfo(
                    id=folder.id,
                    title=folder.title,
                    path_titles=path_titles,
                    path_ids=path_ids,
                    normalized=normalize_text(folder.title),
                    tokens=tokenize_name(folder.title),
                )
            )
        for child in folder.children:
            if isinstance(child, Folder):
                walk(child, path_titles + (child.title,), path_ids + (child.id,))

    walk(root, (), (root.id,))
    return items


def score_similarity(a: FolderInfo, b: FolderInfo) -> float:
    if a.normalized and a.normalized == b.normalized:
        return 1.0
    if a.normalized and b.normalized:
        if a.normalized in b.normalized or b.normalized in a.normalized:
            return SUBSTRING_SCORE
    if not a.tokens or not b.tokens:
        return 0.0
    overlap = len(a.tokens & b.tokens)
    union = len(a.tokens) + len(b.tokens) - overlap
    return overlap / union if union else 0.0


def _index_keys(tokens: frozenset[str]) -> set[str]:
    keys = set(tokens)
    for token in tokens:
        if len(token) > INDEX_PREFIX_LENGTH:
            keys.add(token[:INDEX_PREFIX_LENGTH])
    return keys


def _related(a: FolderInfo, b: FolderInfo) -> bool:
    return a.id in b.path_ids or b.id in a.path_ids


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, index: int) -> int:
        root = index
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[index] != root:
            self.parent[index], index = root, self.parent[index]
        return root

    def union(self, a: int, b: int) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a != root_b:
            self.parent[root_b] = root_a


def _cluster(folders: list[FolderInfo]) -> list[list[FolderInfo]]:
    index_by_key: dict[str, list[int]] = {}
    for position, folder in enumerate(folders):
        for key in _index_keys(folder.tokens):
            index_by_key.setdefault(key, []).append(position)

    components = _DisjointSet(len(folders))
    seen_pairs: set[tuple[str, str]] = set()

    for position, folder in enumerate(folders):
        candidates: set[int] = set()
        for key in _index_keys(folder.tokens):
            candidates.update(index_by_key.get(key, ()))
        candidates.discard(position)

        for other_position in sorted(candidates):
            candidate = folders[other_position]
            pair = tuple(sorted((folder.id, candidate.id)))
            if pair in seen_pairs:
                continue
            seen_pairs.add(pair)

            if _related(folder, candidate):
                continue
            if score_similarity(folder, candidate) < SIMILARITY_THRESHOLD:
                continue
            components.union(position, other_position)

    clusters: dict[int, list[FolderInfo]] = {}
    for position, folder in enumerate(folders):
        clusters.setdefault(components.find(position), []).append(folder)
    return list(clusters.values())


def _suggest(
    cluster: list[FolderInfo], stats: Mapping[str, FolderStats]
) -> MergeSuggestion | None:
    def rank(folder: FolderInfo):
        entry = stats.get(folder.id)
        total = entry.total if entry else 0
        return (folder.depth, -total, len(folder.title))

    ordered = sorted(cluster, key=rank)
    target = ordered[0]

    sources = []
    for folder in ordered[1:]:
        score = score_similarity(folder, target)
        if score < SIMILARITY_THRESHOLD or folder.id in target.path_ids:
            continue
        sources.append(
            MergeSource(id=folder.id, title=folder.title, path=folder.path, score=score)
        )

    if not sources:
        return None

    suggestion_id = f"{target.id}::" + ",".join(sorted(source.id for source in sources))
    return MergeSuggestion(
        id=suggestion_id,
        target_id=target.id,
        target_title=target.title,
        target_path=target.path,
        score=sum(source.score for source in sources) / len(sources),
        sources=tuple(sources),
    )


def build_merge_suggestions(
    folders: list[FolderInfo],
    stats: Mapping[str, FolderStats],
    limit: int = MAX_SUGGESTIONS,
) -> list[MergeSuggestion]:
    suggestions = []
    for cluster in _cluster(folders):
        if len(cluster) < 2:
            continue
        suggestion = _suggest(cluster, stats)
        if suggestion is not None:
            suggestions.append(suggestion)

    suggestions.sort(key=lambda suggestion: suggestion.score, reverse=True)
    return suggestions[:limit]

from __future__ import annotations

from collections.abc import Iterator

from tidymarks.models import (
    Bookmark,
    BookmarkNode,
    FlatBookmark,
    Folder,
    FolderStats,
    NodeLocation,
    TreeSummary,
)

PATH_SEPARATOR = " / "


def iter_nodes(folder: Folder) -> Iterator[BookmarkNode]:
    """Yield every descendant of ``folder`` depth-first, pre-order."""
    for child in folder.children:
        yield child
        if isinstance(child, Folder):
            yield from iter_nodes(child)


def iter_node_ids(folder: Folder) -> Iterator[str]:
    yield folder.id
    for node in iter_nodes(folder):
        yield node.id


def find_node(root: Folder, node_id: str) -> BookmarkNode | None:
    if root.id == node_id:
        return root
    location = find_node_location(root, node_id)
    return location.node if location else None


def find_node_location(folder: Folder, node_id: str) -> NodeLocation | None:
    for index, child in enumerate(folder.children):
        if child.id == node_id:
            return NodeLocation(parent_id=folder.id, index=index, node=child)
        if isinstance(child, Folder):
            found = find_node_location(child, node_id)
            if found:
                return found
    return None


def find_path_ids(
    folder: Folder, target_id: str, path: tuple[str, ...] = ()
) -> list[str] | None:
    """Ids from ``folder`` down to ``target_id`` inclusive, or None."""
    next_path = path + (folder.id,)
    if folder.id == target_id:
        return list(next_path)
    for child in folder.children:
        if child.id == target_id:
            return list(next_path + (child.id,))
        if isinstance(child, Folder):
            found = find_path_ids(child, target_id, next_path)
            if found:
                return found
    return None


def is_ancestor(root: Folder, ancestor_id: str, node_id: str) -> bool:
    if ancestor_id == node_id:
        return False
    path = find_path_ids(root, node_id)
    return bool(path) and ancestor_id in path


def count_tree(nodes: tuple[BookmarkNode, ...], depth: int = 1) -> TreeSummary:
    bookmarks = 0
    folders = 0
    max_depth = depth

    for node in nodes:
        if isinstance(node, Bookmark):
            bookmarks += 1
            continue

        folders += 1
        child_summary = count_tree(node.children, depth + 1)
        bookmarks += child_summary.bookmarks
        folders += child_summary.folders
        max_depth = max(max_depth, child_summary.max_depth)

    return TreeSummary(bookmarks=bookmarks, folders=folders, max_depth=max_depth)


def build_folder_stats(
    folder: Folder, stats: dict[str, FolderStats] | None = None
) -> dict[str, FolderStats]:
    """Descendant counts for ``folder`` and every folder beneath it."""
    if stats is None:
        stats = {}
    _collect_folder_stats(folder, stats)
    return stats


def _collect_folder_stats(folder: Folder, stats: dict[str, FolderStats]) -> FolderStats:
    bookmarks = 0
    folders = 0
    for child in folder.children:
        if isinstance(child, Bookmark):
            bookmarks += 1
            continue
        folders += 1
        child_stats = _collect_folder_stats(child, stats)
        bookmarks += child_stats.bookmarks
        folders += child_stats.folders

    entry = FolderStats(bookmarks=bookmarks, folders=folders)
    stats[folder.id] = entry
    return entry


def flatten_bookmarks(root: Folder) -> list[FlatBookmark]:
    items: list[FlatBookmark] = []

    def walk(folder: Folder, path: list[str]) -> None:
        for child in folder.children:
            if isinstance(child, Folder):
                walk(child, path + [child.title])
                continue
            items.append(
                FlatBookmark(
                    id=child.id,
                    title=child.title,
                    url=child.url,
                    path=PATH_SEPARATOR.join(path),
                )
            )

    walk(root, [])
    return items

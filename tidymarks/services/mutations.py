"""Copy-on-write edits of the bookmark tree.

Every function takes the current root and returns a :class:`MutationResult`.
Only folders on the path from the root to the edited node are rebuilt, every
other subtree is shared with the input tree.  A request that would break a tree
invariant is refused: the result carries the *same* root object and
``changed=False``.  Nothing here raises for a bad request.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from tidymarks.models import Bookmark, BookmarkNode, Folder, ROOT_ID
from tidymarks.services.tree import find_node, find_node_location, find_path_ids, iter_node_ids


POSITION_BEFORE = "before"
POSITION_AFTER = "after"
POSITION_INSIDE = "inside"
DROP_POSITIONS = (POSITION_BEFORE, POSITION_AFTER, POSITION_INSIDE)


@dataclass(frozen=True)
class MutationResult:
    root: Folder
    changed: bool
    node: BookmarkNode | None = None


def _unchanged(root: Folder) -> MutationResult:
    return MutationResult(root=root, changed=False)


def _detach(folder: Folder, node_id: str) -> tuple[Folder, BookmarkNode | None]:
    for index, child in enumerate(folder.children):
        if child.id == node_id:
            children = folder.children[:index] + folder.children[index + 1 :]
            return replace(folder, children=children), child
        if isinstance(child, Folder):
            updated, removed = _detach(child, node_id)
            if removed is not None:
                children = (
                    folder.children[:index] + (updated,) + folder.children[index + 1 :]
                )
                return replace(folder, children=children), removed
    return folder, None


def remove_node_by_id(root: Folder, node_id: str) -> MutationResult:
    """Remove the first node (pre-order) with ``node_id``; the root itself is never matched."""
    updated, removed = _detach(root, node_id)
    if removed is None:
        return _unchanged(root)
    return MutationResult(root=updated, changed=True, node=removed)


def _update_folder(folder: Folder, folder_id: str, update) -> Folder | None:
    if folder.id == folder_id:
        return update(folder)
    for index, child in enumerate(folder.children):
        if not isinstance(child, Folder):
            continue
        updated = _update_folder(child, folder_id, update)
        if updated is not None:
            children = (
                folder.children[:index] + (updated,) + folder.children[index + 1 :]
            )
            return replace(folder, children=children)
    return None


def _splice(folder: Folder, node: BookmarkNode, index: int | None) -> Folder:
    children = list(folder.children)
    if index is None or index < 0 or index > len(children):
        children.append(node)
    else:
        children.insert(index, node)
    return replace(folder, children=tuple(children))


def insert_node_at(
    root: Folder, parent_id: str, node: BookmarkNode, index: int | None = None
) -> MutationResult:
    """Splice ``node`` into ``parent_id``'s children; an out-of-range index appends."""
    existing = set(iter_node_ids(root))
    if node.id in existing:
        return _unchanged(root)
    if isinstance(node, Folder) and any(
        node_id in existing for node_id in iter_node_ids(node)
    ):
        return _unchanged(root)

    updated = _update_folder(root, parent_id, lambda folder: _splice(folder, node, index))
    if updated is None:
        return _unchanged(root)
    return MutationResult(root=updated, changed=True, node=node)


def can_move(root: Folder, source_id: str, target_id: str, position: str) -> bool:
    if position not in DROP_POSITIONS:
        return False
    if source_id == target_id or source_id == ROOT_ID:
        return False
    source = find_node_location(root, source_id)
    if source is None:
        return False
    target = find_node(root, target_id)
    if target is None:
        return False
    if position == POSITION_INSIDE and not isinstance(target, Folder):
        return False
    if position != POSITION_INSIDE and target_id == ROOT_ID:
        return False
    if isinstance(source.node, Folder):
        path = find_path_ids(root, target_id)
        if path and source_id in path:
            return False
    return True


def move_node(root: Folder, source_id: str, target_id: str, position: str) -> MutationResult:
    if not can_move(root, source_id, target_id, position):
        return _unchanged(root)

    removed = remove_node_by_id(root, source_id)
    if removed.node is None:
        return _unchanged(root)

    if position == POSITION_INSIDE:
        inserted = insert_node_at(removed.root, target_id, removed.node)
    else:
        location = find_node_location(removed.root, target_id)
        if location is None:
            return _unchanged(root)
        index = location.index + (1 if position == POSITION_AFTER else 0)
        inserted = insert_node_at(removed.root, location.parent_id, removed.node, index)

    if not inserted.changed:
        return _unchanged(root)
    return MutationResult(root=inserted.root, changed=True, node=removed.node)


def rename_folder(root: Folder, folder_id: str, title: str) -> MutationResult:
    next_title = (title or "").strip()
    if not next_title or folder_id == ROOT_ID:
        return _unchanged(root)
    if not isinstance(find_node(root, folder_id), Folder):
        return _unchanged(root)

    updated = _update_folder(root, folder_id, lambda folder: replace(folder, title=next_title))
    if updated is None:
        return _unchanged(root)
    return MutationResult(root=updated, changed=True, node=find_node(updated, folder_id))


def remove_subtree(root: Folder, folder_id: str) -> MutationResult:
    location = find_node_location(root, folder_id)
    if location is None or not isinstance(location.node, Folder):
        return _unchanged(root)
    return remove_node_by_id(root, folder_id)


def _append_children(root: Folder, target_id: str, children: tuple[BookmarkNode, ...]):
    return _update_folder(
        root,
        target_id,
        lambda folder: replace(folder, children=folder.children + children),
    )


def merge_folders_into(
    root: Folder, source_ids: Iterable[str], target_id: str
) -> MutationResult:
    """Move the children of each source folder to the end of ``target_id``.

    Sources are handled one after another against the tree produced by the
    previous source; an emptied source folder is removed from its parent.
    """
    next_root = root
    for source_id in source_ids:
        if source_id == target_id:
            continue
        target_path = find_path_ids(next_root, target_id)
        if target_path is None or source_id in target_path:
            continue
        removed = remove_node_by_id(next_root, source_id)
        if not isinstance(removed.node, Folder):
            continue
        merged = _append_children(removed.root, target_id, removed.node.children)
        if merged is not None:
            next_root = merged

    if next_root is root:
        return _unchanged(root)
    return MutationResult(root=next_root, changed=True, node=find_node(next_root, target_id))


def _filter_bookmarks(folder: Folder, ids: frozenset[str]) -> Folder:
    children: list[BookmarkNode] = []
    touched = False
    for child in folder.children:
        if isinstance(child, Bookmark):
            if child.id in ids:
                touched = True
                continue
            children.append(child)
            continue
        filtered = _filter_bookmarks(child, ids)
        touched = touched or filtered is not child
        children.append(filtered)

    if not touched:
        return folder
    return replace(folder, children=tuple(children))


def remove_bookmarks_from_tree(root: Folder, ids: Iterable[str]) -> MutationResult:
    """Drop bookmarks with the given ids everywhere; folders are kept even when emptied."""
    id_set = frozenset(ids)
    if not id_set:
        return _unchanged(root)
    updated = _filter_bookmarks(root, id_set)
    if updated is root:
        return _unchanged(root)
    return MutationResult(root=updated, changed=True)

from __future__ import annotations

import logging
import threading

from tidymarks.models import Document, DuplicateGroup, MergeSuggestion, ScanSnapshot
from tidymarks.services import mutations
from tidymarks.services.duplicates import (
    build_duplicate_groups,
    ids_to_remove,
    reconcile_selections,
)
from tidymarks.services.scan_jobs import SCAN_STATE_RUNNING, ScanContext, ScanOrchestrator
from tidymarks.services.similarity import build_merge_suggestions, list_folder_infos
from tidymarks.services.tree import build_folder_stats, flatten_bookmarks

logger = logging.getLogger(__name__)

SESSION_EXTENSION = "tidymarks.session"


class DocumentSession:
    """The single document being cleaned up, plus the state that hangs off it.

    The document is never edited in place; each accepted mutation swaps in a
    new :class:`Document` under the session lock.  Any tree change discards the
    running scan, since its snapshot no longer matches the tree.
    """

    def __init__(self, orchestrator: ScanOrchestrator | None = None) -> None:
        self._lock = threading.RLock()
        self._document: Document | None = None
        self._duplicate_selections: dict[str, str] = {}
        self._dismissed_suggestions: set[str] = set()
        self._scan_lock = threading.Lock()
        self._scan_snapshot: ScanSnapshot | None = None
        self.orchestrator = orchestrator or ScanOrchestrator()
        self.orchestrator.on_update = self._store_scan_snapshot

    @property
    def document(self) -> Document | None:
        with self._lock:
            return self._document

    def load(self, document: Document) -> None:
        self.orchestrator.discard()
        with self._lock:
            self._document = document
            self._duplicate_selections = {}
            self._dismissed_suggestions = set()
        with self._scan_lock:
            self._scan_snapshot = None
        logger.info("Loaded %s (%s bytes)", document.file_name, document.file_size)

    def clear(self) -> None:
        self.orchestrator.discard()
        with self._lock:
            self._document = None
            self._duplicate_selections = {}
            self._dismissed_suggestions = set()
        with self._scan_lock:
            self._scan_snapshot = None

    def apply(self, operation, *args, **kwargs) -> mutations.MutationResult | None:
        """Run a mutation against the current tree and keep the result if it changed."""
        with self._lock:
            document = self._document
            if document is None:
                return None
            result = operation(document.root, *args, **kwargs)
            if not result.changed:
                return result
            self._document = document.with_root(result.root)
        with self._scan_lock:
            self._scan_snapshot = None
        self.orchestrator.discard()
        logger.info("Applied %s", operation.__name__)
        return result

    def duplicate_groups(self) -> tuple[list[DuplicateGroup], dict[str, str]]:
        with self._lock:
            if self._document is None:
                return [], {}
            groups = build_duplicate_groups(flatten_bookmarks(self._document.root))
            self._duplicate_selections = reconcile_selections(
                groups, self._duplicate_selections
            )
            return groups, dict(self._duplicate_selections)

    def select_duplicate(self, key: str, keep_id: str) -> bool:
        with self._lock:
            groups, _ = self.duplicate_groups()
            group = next((row for row in groups if row.key == key), None)
            if group is None or keep_id not in group.item_ids():
                return False
            self._duplicate_selections[key] = keep_id
            return True

    def resolve_duplicate_group(self, key: str) -> mutations.MutationResult | None:
        with self._lock:
            groups, selections = self.duplicate_groups()
            group = next((row for row in groups if row.key == key), None)
            if group is None:
                return None
            remove_ids = ids_to_remove(group, selections.get(key, ""))
        if not remove_ids:
            return None
        return self.apply(mutations.remove_bookmarks_from_tree, remove_ids)

    def merge_suggestions(self) -> list[MergeSuggestion]:
        with self._lock:
            if self._document is None:
                return []
            root = self._document.root
            suggestions = build_merge_suggestions(
                list_folder_infos(root), build_folder_stats(root)
            )
            current_ids = {suggestion.id for suggestion in suggestions}
            self._dismissed_suggestions &= current_ids
            return [
                suggestion
                for suggestion in suggestions
                if suggestion.id not in self._dismissed_suggestions
            ]

    def dismiss_suggestion(self, suggestion_id: str) -> bool:
        with self._lock:
            visible = {suggestion.id for suggestion in self.merge_suggestions()}
            if suggestion_id not in visible:
                return False
            self._dismissed_suggestions.add(suggestion_id)
            return True

    def accept_suggestion(self, suggestion_id: str) -> mutations.MutationResult | None:
        with self._lock:
            suggestion = next(
                (row for row in self.merge_suggestions() if row.id == suggestion_id),
                None,
            )
        if suggestion is None or not suggestion.sources:
            return None
        return self.apply(
            mutations.merge_folders_into,
            suggestion.source_ids(),
            suggestion.target_id,
        )

    def start_scan(self) -> ScanContext | None:
        with self._lock:
            if self._document is None:
                return None
            targets = flatten_bookmarks(self._document.root)
            if not targets:
                return None
        context = self.orchestrator.start(targets)
        return context

    def stop_scan(self) -> bool:
        return self.orchestrator.stop()

    def scan_snapshot(self) -> ScanSnapshot:
        """Last flushed progress while a scan runs, the live state otherwise."""
        live = self.orchestrator.snapshot()
        with self._scan_lock:
            stored = self._scan_snapshot
        if (
            stored is not None
            and stored.scan_id == live.scan_id
            and live.state == SCAN_STATE_RUNNING
        ):
            return stored
        return live

    def _store_scan_snapshot(self, snapshot: ScanSnapshot) -> None:
        with self._scan_lock:
            self._scan_snapshot = snapshot

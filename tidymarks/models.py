from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

ROOT_ID = "root"
ROOT_TITLE = "Root"
DEFAULT_TITLE = "Untitled"

SCAN_STATUS_OK = "ok"
SCAN_STATUS_BROKEN = "broken"
SCAN_STATUS_ERROR = "error"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Bookmark:
    id: str
    title: str
    url: str = ""
    add_date: int | float | None = None
    icon: str | None = None

    kind = "bookmark"

    def as_dict(self):
        return {
            "id": self.id,
            "type": self.kind,
            "title": self.title,
            "url": self.url,
            "add_date": self.add_date,
            "icon": self.icon,
        }


@dataclass(frozen=True)
class Folder:
    id: str
    title: str
    children: tuple[Bookmark | Folder, ...] = ()
    add_date: int | float | None = None
    last_modified: int | float | None = None

    kind = "folder"

    def as_dict(self):
        return {
            "id": self.id,
            "type": self.kind,
            "title": self.title,
            "add_date": self.add_date,
            "last_modified": self.last_modified,
            "children": [child.as_dict() for child in self.children],
        }


BookmarkNode = Bookmark | Folder


def empty_root() -> Folder:
    return Folder(id=ROOT_ID, title=ROOT_TITLE)


@dataclass(frozen=True)
class Document:
    root: Folder
    file_name: str
    file_size: int
    last_modified: int | None
    imported_at: datetime

    def with_root(self, root: Folder) -> Document:
        return Document(
            root=root,
            file_name=self.file_name,
            file_size=self.file_size,
            last_modified=self.last_modified,
            imported_at=self.imported_at,
        )

    def as_dict(self):
        return {
            "file_name": self.file_name,
            "file_size": self.file_size,
            "last_modified": self.last_modified,
            "imported_at": self.imported_at.isoformat(),
        }


@dataclass(frozen=True)
class NodeLocation:
    parent_id: str
    index: int
    node: BookmarkNode


@dataclass(frozen=True)
class TreeSummary:
    bookmarks: int
    folders: int
    max_depth: int

    def as_dict(self):
        return {
            "bookmarks": self.bookmarks,
            "folders": self.folders,
            "max_depth": self.max_depth,
        }


@dataclass(frozen=True)
class FolderStats:
    bookmarks: int
    folders: int

    @property
    def total(self) -> int:
        return self.bookmarks + self.folders

    def as_dict(self):
        return {
            "bookmarks": self.bookmarks,
            "folders": self.folders,
            "total": self.total,
        }


@dataclass(frozen=True)
class FlatBookmark:
    id: str
    title: str
    url: str
    path: str

    def as_dict(self):
        return {"id": self.id, "title": self.title, "url": self.url, "path": self.path}


@dataclass(frozen=True)
class FolderInfo:
    id: str
    title: str
    path_titles: tuple[str, ...]
    path_ids: tuple[str, ...]
    normalized: str
    tokens: frozenset[str]

    @property
    def depth(self) -> int:
        return len(self.path_ids)

    @property
    def path(self) -> str:
        return " / ".join(self.path_titles) or ROOT_TITLE


@dataclass(frozen=True)
class DuplicateItem:
    id: str
    title: str
    url: str
    path: str
    normalized: str

    def as_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "path": self.path,
            "normalized": self.normalized,
        }


@dataclass(frozen=True)
class DuplicateGroup:
    key: str
    items: tuple[DuplicateItem, ...]

    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def as_dict(self):
        return {"key": self.key, "items": [item.as_dict() for item in self.items]}


@dataclass(frozen=True)
class MergeSource:
    id: str
    title: str
    path: str
    score: float

    def as_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "path": self.path,
            "score": round(self.score, 4),
        }


@dataclass(frozen=True)
class MergeSuggestion:
    id: str
    target_id: str
    target_title: str
    target_path: str
    score: float
    sources: tuple[MergeSource, ...]

    def source_ids(self) -> list[str]:
        return [source.id for source in self.sources]

    def as_dict(self):
        return {
            "id": self.id,
            "target_id": self.target_id,
            "target_title": self.target_title,
            "target_path": self.target_path,
            "score": round(self.score, 4),
            "sources": [source.as_dict() for source in self.sources],
        }


@dataclass(frozen=True)
class ScanResult:
    id: str
    title: str
    url: str
    path: str
    status: str
    status_code: int | None = None
    error: str | None = None
    duration_ms: int | None = None

    def as_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "path": self.path,
            "status": self.status,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ScanStats:
    total: int = 0
    scanned: int = 0
    ok: int = 0
    broken: int = 0
    error: int = 0

    def record(self, status: str) -> None:
        self.scanned += 1
        if status == SCAN_STATUS_OK:
            self.ok += 1
        elif status == SCAN_STATUS_BROKEN:
            self.broken += 1
        else:
            self.error += 1

    def copy(self) -> ScanStats:
        return ScanStats(
            total=self.total,
            scanned=self.scanned,
            ok=self.ok,
            broken=self.broken,
            error=self.error,
        )

    @property
    def progress(self) -> int:
        return int(round((self.scanned / self.total) * 100)) if self.total else 0

    def as_dict(self):
        return {
            "total": self.total,
            "scanned": self.scanned,
            "ok": self.ok,
            "broken": self.broken,
            "error": self.error,
            "progress": self.progress,
        }


@dataclass(frozen=True)
class ScanSnapshot:
    scan_id: int
    state: str
    stats: ScanStats
    results: tuple[ScanResult, ...] = ()
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def as_dict(self, status_filter: str | None = None):
        results = self.results
        if status_filter and status_filter != "all":
            results = tuple(row for row in results if row.status == status_filter)
        elapsed_seconds = None
        if self.started_at is not None:
            now = self.finished_at or utcnow()
            elapsed_seconds = max(0, int((now - self.started_at).total_seconds()))
        return {
            "scan_id": self.scan_id,
            "state": self.state,
            "stats": self.stats.as_dict(),
            "results": [row.as_dict() for row in results],
            "error_message": self.error_message,
            "elapsed_seconds": elapsed_seconds,
            "can_stop": self.state == "running",
        }

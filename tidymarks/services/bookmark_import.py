from __future__ import annotations

import itertools
import math
from typing import cast

from bs4 import BeautifulSoup, Tag

from tidymarks.errors import ParseError
from tidymarks.models import (
    Bookmark,
    BookmarkNode,
    DEFAULT_TITLE,
    Document,
    Folder,
    ROOT_ID,
    ROOT_TITLE,
    utcnow,
)

FOLDER_MARKERS = ("h3", "h2", "h1")


def clean_text(value: str | None) -> str:
    return (value or "").strip() or DEFAULT_TITLE


def read_number_attr(element: Tag, name: str) -> int | float | None:
    value = element.get(name)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        parsed = float(value)
    except ValueError:
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return int(parsed) if parsed.is_integer() else parsed


def _iter_dt_entries(dl: Tag) -> list[Tag]:
    entries: list[Tag] = []
    for dt in dl.find_all("dt"):
        if not isinstance(dt, Tag):
            continue
        parent_dl = dt.find_parent("dl")
        if parent_dl is dl:
            entries.append(cast(Tag, dt))
    return entries


def _find_nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _find_marker_in_dt(dt: Tag, names) -> Tag | None:
    for marker in dt.find_all(names):
        if isinstance(marker, Tag) and marker.find_parent("dt") is dt:
            return marker
    return None


def _parse_dl(dl: Tag, next_id) -> tuple[BookmarkNode, ...]:
    nodes: list[BookmarkNode] = []
    for dt in _iter_dt_entries(dl):
        heading = _find_marker_in_dt(dt, list(FOLDER_MARKERS))
        if heading is not None:
            folder_id = next_id()
            nested_dl = _find_nested_dl(dt)
            children = _parse_dl(nested_dl, next_id) if nested_dl is not None else ()
            nodes.append(
                Folder(
                    id=folder_id,
                    title=clean_text(heading.get_text()),
                    children=children,
                    add_date=read_number_attr(heading, "add_date"),
                    last_modified=read_number_attr(heading, "last_modified"),
                )
            )
            continue

        anchor = _find_marker_in_dt(dt, "a")
        if anchor is None:
            continue
        href = anchor.get("href")
        icon = anchor.get("icon")
        nodes.append(
            Bookmark(
                id=next_id(),
                title=clean_text(anchor.get_text()),
                url=href.strip() if isinstance(href, str) else "",
                add_date=read_number_attr(anchor, "add_date"),
                icon=icon if isinstance(icon, str) and icon else None,
            )
        )
    return tuple(nodes)


def parse_bookmark_html(html: str) -> Folder:
    """Build the document tree of a Netscape bookmark export."""
    soup = BeautifulSoup(html or "", "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        raise ParseError("Could not find a bookmark list in this HTML file.")

    counter = itertools.count()

    def next_id() -> str:
        return f"node-{next(counter)}"

    return Folder(id=ROOT_ID, title=ROOT_TITLE, children=_parse_dl(root, next_id))


def import_document(
    html: str,
    file_name: str,
    file_size: int | None = None,
    last_modified: int | None = None,
) -> Document:
    root = parse_bookmark_html(html)
    if file_size is None:
        file_size = len((html or "").encode("utf-8"))
    return Document(
        root=root,
        file_name=file_name or "bookmarks.html",
        file_size=file_size,
        last_modified=last_modified,
        imported_at=utcnow(),
    )

from __future__ import annotations

import html
import re
from datetime import date

from tidymarks.models import Bookmark, BookmarkNode, Folder

INDENT = "  "

HEADER_LINES = [
    "<!DOCTYPE NETSCAPE-Bookmark-file-1>",
    "<!-- This is an automatically generated file.",
    "     It will be read and overwritten.",
    "     DO NOT EDIT! -->",
    '<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">',
    "<TITLE>Bookmarks</TITLE>",
    "<H1>Bookmarks</H1>",
]


def _escape(value: str | None) -> str:
    return html.escape(value or "", quote=True)


def _number_attr(name: str, value) -> str:
    if value is None:
        return ""
    return f' {name}="{value}"'


def _bookmark_line(bookmark: Bookmark, depth: int) -> str:
    icon = f' ICON="{_escape(bookmark.icon)}"' if bookmark.icon else ""
    return (
        f'{INDENT * depth}<DT><A HREF="{_escape(bookmark.url)}"'
        f"{_number_attr('ADD_DATE', bookmark.add_date)}{icon}>"
        f"{_escape(bookmark.title)}</A>"
    )


def build_bookmark_html(root: Folder) -> str:
    """Serialize the tree as a Netscape bookmark file; the root has no folder entry."""
    lines = list(HEADER_LINES)

    def append_node(node: BookmarkNode, depth: int) -> None:
        if isinstance(node, Bookmark):
            lines.append(_bookmark_line(node, depth))
            return

        indent = INDENT * depth
        lines.append(
            f"{indent}<DT><H3"
            f"{_number_attr('ADD_DATE', node.add_date)}"
            f"{_number_attr('LAST_MODIFIED', node.last_modified)}>"
            f"{_escape(node.title)}</H3>"
        )
        lines.append(f"{indent}<DL><p>")
        for child in node.children:
            append_node(child, depth + 1)
        lines.append(f"{indent}</DL><p>")

    lines.append("<DL><p>")
    for child in root.children:
        append_node(child, 1)
    lines.append("</DL><p>")
    return "\n".join(lines) + "\n"


def export_filename(file_name: str | None, today: date) -> str:
    base = re.sub(r"\.html?$", "", file_name or "", flags=re.IGNORECASE) or "bookmarks"
    return f"{base}-cleaned-{today.isoformat()}.html"

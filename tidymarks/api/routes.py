from __future__ import annotations

from flask import Response, current_app, jsonify, request

from tidymarks.api import api_bp
from tidymarks.errors import ParseError, ValidationError
from tidymarks.models import utcnow
from tidymarks.services import mutations
from tidymarks.services.bookmark_import import import_document
from tidymarks.services.export import build_bookmark_html, export_filename
from tidymarks.services.link_probe import probe_link
from tidymarks.services.session import SESSION_EXTENSION, DocumentSession
from tidymarks.services.tree import build_folder_stats, count_tree

SCAN_FILTERS = {"all", "broken", "ok", "error"}


def _session() -> DocumentSession:
    return current_app.extensions[SESSION_EXTENSION]


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _to_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _no_document():
    return jsonify({"error": "no document loaded"}), 404


def _document_payload(document) -> dict:
    stats = build_folder_stats(document.root)
    return {
        "document": document.as_dict(),
        "summary": count_tree(document.root.children).as_dict(),
        "folder_stats": {folder_id: entry.as_dict() for folder_id, entry in stats.items()},
        "tree": document.root.as_dict(),
    }


def _mutation_reply(result, rejected_message: str):
    if result is None:
        return _no_document()
    if not result.changed:
        return jsonify({"error": rejected_message}), 409
    payload = {"status": "updated"}
    if result.node is not None:
        payload["node"] = result.node.as_dict()
    return jsonify(payload)


@api_bp.route("/health")
def health():
    return jsonify({"ok": True, "service": "Tidymarks"})


@api_bp.route("/check", methods=["POST"])
def check_link_api():
    payload = _payload()
    url = payload.get("url")
    try:
        result = probe_link(url, payload.get("timeoutMs"))
    except ValidationError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify(result.as_payload())


@api_bp.route("/document", methods=["POST"])
def import_document_api():
    upload = request.files.get("file")
    if not upload:
        return jsonify({"error": "file field is required"}), 400

    raw = upload.read()
    html = raw.decode("utf-8", errors="ignore")
    try:
        document = import_document(
            html,
            file_name=upload.filename or "bookmarks.html",
            file_size=len(raw),
            last_modified=_to_int(request.form.get("last_modified")),
        )
    except ParseError as exc:
        current_app.logger.warning("Import of %s failed: %s", upload.filename, exc)
        return jsonify({"error": str(exc)}), 400

    _session().load(document)
    summary = count_tree(document.root.children)
    return (
        jsonify(
            {
                "status": "imported",
                "document": document.as_dict(),
                "summary": summary.as_dict(),
            }
        ),
        201,
    )


@api_bp.route("/document", methods=["GET"])
def document_api():
    document = _session().document
    if document is None:
        return _no_document()
    return jsonify(_document_payload(document))


@api_bp.route("/document", methods=["DELETE"])
def discard_document_api():
    _session().clear()
    return jsonify({"status": "discarded"})


@api_bp.route("/document/export")
def export_document_api():
    document = _session().document
    if document is None:
        return _no_document()
    filename = export_filename(document.file_name, utcnow().date())
    return Response(
        build_bookmark_html(document.root),
        content_type="text/html; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api_bp.route("/document/nodes/<node_id>/move", methods=["POST"])
def move_node_api(node_id: str):
    payload = _payload()
    target_id = (payload.get("target_id") or "").strip()
    position = (payload.get("position") or "").strip().lower()
    if not target_id:
        return jsonify({"error": "target_id is required"}), 400
    if position not in mutations.DROP_POSITIONS:
        return jsonify({"error": "position must be before, after or inside"}), 400

    result = _session().apply(mutations.move_node, node_id, target_id, position)
    return _mutation_reply(result, "move rejected")


@api_bp.route("/document/folders/<folder_id>", methods=["PATCH"])
def rename_folder_api(folder_id: str):
    title = (_payload().get("title") or "").strip()
    if not title:
        return jsonify({"error": "folder title is required"}), 400
    result = _session().apply(mutations.rename_folder, folder_id, title)
    return _mutation_reply(result, "rename rejected")


@api_bp.route("/document/folders/<folder_id>", methods=["DELETE"])
def delete_folder_api(folder_id: str):
    result = _session().apply(mutations.remove_subtree, folder_id)
    if result is not None and result.changed:
        return jsonify({"status": "deleted"})
    return _mutation_reply(result, "folder not found")


@api_bp.route("/document/folders/<folder_id>/merge", methods=["POST"])
def merge_folders_api(folder_id: str):
    source_ids = _payload().get("source_ids")
    if not isinstance(source_ids, list) or not source_ids:
        return jsonify({"error": "source_ids must be a non-empty list"}), 400
    result = _session().apply(
        mutations.merge_folders_into, [str(value) for value in source_ids], folder_id
    )
    return _mutation_reply(result, "merge rejected")


@api_bp.route("/duplicates", methods=["GET"])
def duplicates_api():
    session = _session()
    if session.document is None:
        return _no_document()
    groups, selections = session.duplicate_groups()
    return jsonify(
        {
            "items": [
                {**group.as_dict(), "keep_id": selections.get(group.key)}
                for group in groups
            ]
        }
    )


@api_bp.route("/duplicates/selection", methods=["POST"])
def duplicate_selection_api():
    payload = _payload()
    key = payload.get("key") or ""
    keep_id = payload.get("id") or ""
    if not _session().select_duplicate(key, keep_id):
        return jsonify({"error": "duplicate group or bookmark not found"}), 404
    return jsonify({"status": "selected", "key": key, "keep_id": keep_id})


@api_bp.route("/duplicates/resolve", methods=["POST"])
def resolve_duplicates_api():
    key = _payload().get("key") or ""
    result = _session().resolve_duplicate_group(key)
    if result is None or not result.changed:
        return jsonify({"error": "duplicate group not found"}), 404
    return jsonify({"status": "resolved", "key": key})


@api_bp.route("/suggestions", methods=["GET"])
def suggestions_api():
    session = _session()
    if session.document is None:
        return _no_document()
    return jsonify({"items": [row.as_dict() for row in session.merge_suggestions()]})


@api_bp.route("/suggestions/<path:suggestion_id>/dismiss", methods=["POST"])
def dismiss_suggestion_api(suggestion_id: str):
    if not _session().dismiss_suggestion(suggestion_id):
        return jsonify({"error": "suggestion not found"}), 404
    return jsonify({"status": "dismissed"})


@api_bp.route("/suggestions/<path:suggestion_id>/accept", methods=["POST"])
def accept_suggestion_api(suggestion_id: str):
    result = _session().accept_suggestion(suggestion_id)
    if result is None:
        return jsonify({"error": "suggestion not found"}), 404
    return _mutation_reply(result, "merge rejected")


@api_bp.route("/scan", methods=["POST"])
def start_scan_api():
    session = _session()
    if session.document is None:
        return _no_document()
    context = session.start_scan()
    if context is None:
        return jsonify({"error": "No bookmarks available to scan."}), 400
    current_app.logger.info("Scan %s queued", context.scan_id)
    return jsonify({"status": "started", "scan": context.snapshot().as_dict()}), 202


@api_bp.route("/scan", methods=["GET"])
def scan_status_api():
    status_filter = (request.args.get("filter") or "all").strip().lower()
    if status_filter not in SCAN_FILTERS:
        return jsonify({"error": "unknown filter"}), 400
    return jsonify(_session().scan_snapshot().as_dict(status_filter))


@api_bp.route("/scan/stop", methods=["POST"])
def stop_scan_api():
    stopped = _session().stop_scan()
    return jsonify({"status": "stopping" if stopped else "idle"})

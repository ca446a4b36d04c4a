import io
import threading
import time

from tidymarks.errors import ScanCancelled
from tidymarks.services.bookmark_import import parse_bookmark_html
from tidymarks.services.link_probe import LinkProbeResult
from tidymarks.services.session import SESSION_EXTENSION


def _import(client, html, filename="bookmarks.html"):
    return client.post(
        "/api/document",
        data={"file": (io.BytesIO(html.encode("utf-8")), filename), "last_modified": "1700000500"},
        content_type="multipart/form-data",
    )


def _tree(client):
    response = client.get("/api/document")
    assert response.status_code == 200
    return response.get_json()["tree"]


def _children(node):
    return [child["title"] for child in node["children"]]


def _find(node, node_id):
    if node["id"] == node_id:
        return node
    for child in node.get("children", []):
        found = _find(child, node_id)
        if found is not None:
            return found
    return None


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["ok"] is True


def test_import_and_read_document(client, sample_export):
    response = _import(client, sample_export)
    assert response.status_code == 201
    payload = response.get_json()
    assert payload["status"] == "imported"
    assert payload["summary"]["bookmarks"] == 4
    assert payload["summary"]["folders"] == 4
    assert payload["document"]["file_name"] == "bookmarks.html"
    assert payload["document"]["file_size"] == len(sample_export.encode("utf-8"))
    assert payload["document"]["last_modified"] == 1700000500

    document = client.get("/api/document").get_json()
    assert _children(document["tree"]) == ["Work", "Recipes", "Misc", "Root Link"]
    assert document["folder_stats"]["root"] == {"bookmarks": 4, "folders": 4, "total": 8}
    work = _find(document["tree"], "node-0")
    assert work["add_date"] == 1700000000
    assert work["last_modified"] == 1700000100
    assert _find(document["tree"], "node-7")["icon"] == "data:image/png;base64,AAAA"


def test_import_rejects_missing_or_invalid_file(client):
    assert client.post("/api/document", data={}).status_code == 400

    response = _import(client, "<html><body><p>No bookmarks here</p></body></html>")
    assert response.status_code == 400
    assert "bookmark list" in response.get_json()["error"]
    assert client.get("/api/document").status_code == 404


def test_endpoints_require_a_document(client):
    assert client.get("/api/document").status_code == 404
    assert client.get("/api/document/export").status_code == 404
    assert client.get("/api/duplicates").status_code == 404
    assert client.get("/api/suggestions").status_code == 404
    assert client.post("/api/scan").status_code == 404
    response = client.post(
        "/api/document/nodes/node-1/move", json={"target_id": "node-0", "position": "inside"}
    )
    assert response.status_code == 404


def test_discard_document(client, sample_export):
    _import(client, sample_export)
    assert client.delete("/api/document").get_json()["status"] == "discarded"
    assert client.get("/api/document").status_code == 404


def test_move_node(client, sample_export):
    _import(client, sample_export)

    response = client.post(
        "/api/document/nodes/node-7/move", json={"target_id": "node-0", "position": "inside"}
    )
    assert response.status_code == 200
    assert response.get_json()["node"]["id"] == "node-7"
    tree = _tree(client)
    assert _children(_find(tree, "node-0")) == ["A", "B", "Root Link"]

    response = client.post(
        "/api/document/nodes/node-3/move", json={"target_id": "node-0", "position": "before"}
    )
    assert response.status_code == 200
    assert _children(_tree(client)) == ["Recipes", "Work", "Misc"]


def test_move_validation_and_rejection(client, sample_export):
    _import(client, sample_export)

    bad_position = client.post(
        "/api/document/nodes/node-1/move", json={"target_id": "node-0", "position": "over"}
    )
    assert bad_position.status_code == 400

    missing_target = client.post("/api/document/nodes/node-1/move", json={"position": "inside"})
    assert missing_target.status_code == 400

    cycle = client.post(
        "/api/document/nodes/node-5/move", json={"target_id": "node-6", "position": "inside"}
    )
    assert cycle.status_code == 409
    assert _children(_find(_tree(client), "node-5")) == ["recipe"]


def test_rename_and_delete_folder(client, sample_export):
    _import(client, sample_export)

    response = client.patch("/api/document/folders/node-3", json={"title": "  Cooking "})
    assert response.status_code == 200
    assert _find(_tree(client), "node-3")["title"] == "Cooking"

    assert client.patch("/api/document/folders/node-3", json={"title": "  "}).status_code == 400
    assert client.patch("/api/document/folders/root", json={"title": "Top"}).status_code == 409
    assert client.patch("/api/document/folders/node-1", json={"title": "Nope"}).status_code == 409

    response = client.delete("/api/document/folders/node-5")
    assert response.get_json() == {"status": "deleted"}
    assert _find(_tree(client), "node-6") is None
    assert client.delete("/api/document/folders/node-5").status_code == 409


def test_merge_folders(client, sample_export):
    _import(client, sample_export)

    response = client.post("/api/document/folders/node-0/merge", json={"source_ids": ["node-3"]})
    assert response.status_code == 200
    tree = _tree(client)
    assert _children(_find(tree, "node-0")) == ["A", "B", "Pasta"]
    assert _find(tree, "node-3") is None

    assert client.post("/api/document/folders/node-0/merge", json={"source_ids": []}).status_code == 400
    rejected = client.post("/api/document/folders/node-6/merge", json={"source_ids": ["node-5"]})
    assert rejected.status_code == 409


def test_duplicates_select_and_resolve(client, sample_export):
    _import(client, sample_export)

    payload = client.get("/api/duplicates").get_json()
    assert len(payload["items"]) == 1
    group = payload["items"][0]
    assert group["key"] == "x.com/"
    assert [item["id"] for item in group["items"]] == ["node-1", "node-2"]
    assert group["keep_id"] == "node-1"

    missing = client.post("/api/duplicates/selection", json={"key": "x.com/", "id": "node-4"})
    assert missing.status_code == 404

    selected = client.post("/api/duplicates/selection", json={"key": "x.com/", "id": "node-2"})
    assert selected.get_json() == {"status": "selected", "key": "x.com/", "keep_id": "node-2"}
    assert client.get("/api/duplicates").get_json()["items"][0]["keep_id"] == "node-2"

    resolved = client.post("/api/duplicates/resolve", json={"key": "x.com/"})
    assert resolved.status_code == 200
    assert _children(_find(_tree(client), "node-0")) == ["B"]
    assert client.get("/api/duplicates").get_json()["items"] == []
    assert client.post("/api/duplicates/resolve", json={"key": "x.com/"}).status_code == 404


def test_suggestions_dismiss_and_accept(client, sample_export):
    _import(client, sample_export)

    items = client.get("/api/suggestions").get_json()["items"]
    assert len(items) == 1
    suggestion = items[0]
    assert suggestion["id"] == "node-3::node-6"
    assert suggestion["target_title"] == "Recipes"
    assert suggestion["sources"][0]["path"] == "Misc / recipe"

    dismissed = client.post(f"/api/suggestions/{suggestion['id']}/dismiss")
    assert dismissed.get_json() == {"status": "dismissed"}
    assert client.get("/api/suggestions").get_json()["items"] == []
    assert client.post(f"/api/suggestions/{suggestion['id']}/accept").status_code == 404

    _import(client, sample_export)
    accepted = client.post(f"/api/suggestions/{suggestion['id']}/accept")
    assert accepted.status_code == 200
    tree = _tree(client)
    assert _find(tree, "node-6") is None
    assert _children(_find(tree, "node-3")) == ["Pasta"]
    assert _children(_find(tree, "node-5")) == []
    assert client.get("/api/suggestions").get_json()["items"] == []


def test_export_download(client, sample_export):
    _import(client, sample_export, filename="Firefox.html")
    client.patch("/api/document/folders/node-3", json={"title": "Cooking"})

    response = client.get("/api/document/export")
    assert response.status_code == 200
    assert response.mimetype == "text/html"
    disposition = response.headers["Content-Disposition"]
    assert disposition.startswith('attachment; filename="Firefox-cleaned-')

    root = parse_bookmark_html(response.get_data(as_text=True))
    assert [child.title for child in root.children] == ["Work", "Cooking", "Misc", "Root Link"]


def test_check_endpoint_validates_input(client, monkeypatch):
    missing = client.post("/api/check", json={})
    assert missing.status_code == 400
    assert missing.get_json() == {"ok": False, "error": "Missing url"}

    unsupported = client.post("/api/check", json={"url": "ftp://example.com"})
    assert unsupported.status_code == 400
    assert unsupported.get_json()["error"] == "Only http/https URLs are supported"

    malformed = client.post("/api/check", json={"url": "http://exa\tmple.com/"})
    assert malformed.status_code == 400
    assert malformed.get_json()["ok"] is False
    assert malformed.get_json()["error"].startswith("Invalid url")

    seen = {}

    def fake_probe(url, timeout_ms):
        seen["args"] = (url, timeout_ms)
        return LinkProbeResult(ok=True, method="HEAD", duration_ms=7, status=200)

    monkeypatch.setattr("tidymarks.api.routes.probe_link", fake_probe)
    response = client.post("/api/check", json={"url": "https://example.com", "timeoutMs": 3000})
    assert response.get_json() == {"ok": True, "durationMs": 7, "method": "HEAD", "status": 200}
    assert seen["args"] == ("https://example.com", 3000)


def test_scan_runs_to_completion_with_filters(app, client, sample_export, monkeypatch):
    _import(client, sample_export)
    session = app.extensions[SESSION_EXTENSION]

    def fake_prober(url, timeout_ms, token):
        status = 404 if "pasta" in url else 200
        return LinkProbeResult(ok=True, method="HEAD", duration_ms=1, status=status)

    monkeypatch.setattr(session.orchestrator, "prober", fake_prober)

    started = client.post("/api/scan")
    assert started.status_code == 202
    assert started.get_json()["status"] == "started"
    assert started.get_json()["scan"]["stats"]["total"] == 4

    session.orchestrator.wait(5)
    payload = client.get("/api/scan").get_json()
    assert payload["state"] == "done"
    assert payload["can_stop"] is False
    assert payload["stats"] == {
        "total": 4,
        "scanned": 4,
        "ok": 3,
        "broken": 1,
        "error": 0,
        "progress": 100,
    }
    assert len(payload["results"]) == 4

    broken = client.get("/api/scan?filter=broken").get_json()["results"]
    assert [row["title"] for row in broken] == ["Pasta"]
    assert broken[0]["path"] == "Recipes"
    assert client.get("/api/scan?filter=error").get_json()["results"] == []
    assert client.get("/api/scan?filter=slow").status_code == 400
    assert client.post("/api/scan/stop").get_json() == {"status": "idle"}


def test_scan_rejects_empty_document(client):
    _import(client, "<DL><p><DT><H3>Only Folder</H3><DL><p></DL><p></DL><p>")
    response = client.post("/api/scan")
    assert response.status_code == 400
    assert response.get_json()["error"] == "No bookmarks available to scan."


def test_stop_and_tree_edit_discard_running_scan(app, client, sample_export, monkeypatch):
    _import(client, sample_export)
    session = app.extensions[SESSION_EXTENSION]
    probing = threading.Event()

    def blocking_prober(url, timeout_ms, token):
        probing.set()
        while not token.is_cancelled():
            time.sleep(0.01)
        raise ScanCancelled("stopped")

    monkeypatch.setattr(session.orchestrator, "prober", blocking_prober)

    client.post("/api/scan")
    assert probing.wait(2)
    assert client.get("/api/scan").get_json()["can_stop"] is True
    assert client.post("/api/scan/stop").get_json() == {"status": "stopping"}
    session.orchestrator.wait(5)
    assert client.get("/api/scan").get_json()["state"] == "stopped"

    probing.clear()
    client.post("/api/scan")
    assert probing.wait(2)
    client.patch("/api/document/folders/node-3", json={"title": "Cooking"})
    payload = client.get("/api/scan").get_json()
    assert payload["state"] == "idle"
    assert payload["results"] == []


def test_tree_edit_returns_while_checks_are_in_flight(app, client, sample_export, monkeypatch):
    _import(client, sample_export)
    session = app.extensions[SESSION_EXTENSION]
    probing = threading.Event()
    release = threading.Event()

    def stuck_prober(url, timeout_ms, token):
        probing.set()
        release.wait(3)
        return LinkProbeResult(ok=True, method="HEAD", duration_ms=3000, status=200)

    monkeypatch.setattr(session.orchestrator, "prober", stuck_prober)

    client.post("/api/scan")
    assert probing.wait(2)

    started = time.monotonic()
    response = client.patch("/api/document/folders/node-0", json={"title": "Office"})
    elapsed = time.monotonic() - started
    release.set()

    assert response.status_code == 200
    assert elapsed < 0.5
    payload = client.get("/api/scan").get_json()
    assert payload["state"] == "idle"
    assert payload["results"] == []


def test_app_config_from_test_settings(app):
    assert app.config["TESTING"] is True
    assert app.config["SCAN_FLUSH_INTERVAL_MS"] == 10
    assert app.config["MAX_CONTENT_LENGTH"] == 50 * 1024 * 1024
    assert app.secret_key is None

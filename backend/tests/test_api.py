"""API integration tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from agent_sources.app import app

ALICE = {"X-User-Id": "alice"}
MALLORY = {"X-User-Id": "mallory"}
LINK_BODY = {"fileId": "file-report", "messageId": "msg-1", "conversationId": "conv-1"}


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def cited(client: TestClient, tmp_path: Path, search_output: str) -> Path:
    """Alice's message msg-1 cites file-report (stored locally) and file-notes (no metadata)."""
    local = tmp_path / "report.pdf"
    local.write_bytes(b"%PDF-1.4 quarterly report")
    resp = client.post(
        "/api/files/metadata",
        headers=ALICE,
        json={
            "fileId": "file-report",
            "displayName": "report.pdf",
            "source": "local",
            "mimeType": "application/pdf",
            "bytes": local.stat().st_size,
            "filepath": str(local),
        },
    )
    assert resp.status_code == 200
    resp = client.post(
        "/api/agents/responses",
        headers=ALICE,
        json={
            "messageId": "msg-1",
            "conversationId": "conv-1",
            "contentParts": [{"type": "tool_call", "tool_call": {"name": "file_search", "output": search_output}}],
        },
    )
    assert resp.status_code == 200
    return local


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_requests_without_user_are_rejected(client: TestClient) -> None:
    resp = client.post("/api/files/agent-source-url", json=LINK_BODY)
    assert resp.status_code == 401
    assert "error" in resp.json()


def test_missing_fields_are_bad_requests(client: TestClient) -> None:
    resp = client.post("/api/files/agent-source-url", headers=ALICE, json={"fileId": "file-report"})
    assert resp.status_code == 400
    assert "messageId" in resp.json()["error"]


def test_process_response_returns_citations(client: TestClient, search_output: str) -> None:
    resp = client.post(
        "/api/agents/responses",
        headers=ALICE,
        json={
            "messageId": "msg-7",
            "conversationId": "conv-7",
            "contentParts": [{"type": "tool_result", "tool_result": search_output}],
        },
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["persisted"] is True
    assert [source["fileId"] for source in payload["sources"]] == ["file-report", "file-notes"]
    assert payload["sources"][0]["fileName"] == "report.pdf"
    assert payload["sources"][0]["pages"] == [2, 5]

    resp = client.post(
        "/api/agents/responses",
        headers=MALLORY,
        json={"messageId": "msg-7", "conversationId": "conv-7", "contentParts": []},
    )
    assert resp.status_code == 403


def test_link_flow(client: TestClient, cited: Path) -> None:
    resp = client.post("/api/files/agent-source-url", headers=ALICE, json=LINK_BODY)
    assert resp.status_code == 200
    link = resp.json()
    assert link["downloadUrl"] == "http://testserver/api/files/download/alice/file-report"
    assert link["fileName"] == "report.pdf"
    assert link["mimeType"] == "application/pdf"
    assert link["expiresAt"].endswith("Z")

    download = client.get("/api/files/download/alice/file-report", headers=ALICE)
    assert download.status_code == 200
    assert download.content == cited.read_bytes()
    assert "report.pdf" in download.headers["content-disposition"]


def test_denied_and_not_found_are_distinct(client: TestClient, cited: Path) -> None:
    denied = client.post("/api/files/agent-source-url", headers=MALLORY, json=LINK_BODY)
    assert denied.status_code == 403
    assert denied.json() == {"error": "Access denied"}

    uncited = client.post("/api/files/agent-source-url", headers=ALICE, json={**LINK_BODY, "fileId": "file-x"})
    assert uncited.status_code == 403
    assert uncited.json() == denied.json()

    missing = client.post("/api/files/agent-source-url", headers=ALICE, json={**LINK_BODY, "fileId": "file-notes"})
    assert missing.status_code == 404
    assert missing.json() == {"error": "File not found"}

    stolen = client.get("/api/files/download/alice/file-report", headers=MALLORY)
    assert stolen.status_code == 403


def test_batch_links(client: TestClient, cited: Path) -> None:
    body = {"fileIds": ["file-report", "file-notes"], "messageId": "msg-1", "conversationId": "conv-1"}
    resp = client.post("/api/files/agent-source-urls-batch", headers=ALICE, json=body)
    assert resp.status_code == 200
    assert list(resp.json()["urls"]) == ["file-report"]

    too_many = {**body, "fileIds": [f"file-{i}" for i in range(21)]}
    resp = client.post("/api/files/agent-source-urls-batch", headers=ALICE, json=too_many)
    assert resp.status_code == 400
    assert "20" in resp.json()["error"]


def test_prefetch_flow(client: TestClient, cited: Path) -> None:
    resp = client.post(
        "/api/prefetch/run",
        headers=ALICE,
        json={"messageId": "msg-1", "conversationId": "conv-1", "priorityOverride": True},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "complete"
    assert resp.json()["prefetchedCount"] == 1
    assert resp.json()["failed"] == 1

    lookup = client.get("/api/prefetch/msg-1/file-report", headers=ALICE)
    assert lookup.json() == {
        "prefetched": True,
        "url": "http://testserver/api/files/download/alice/file-report",
    }
    assert client.get("/api/prefetch/msg-1/file-report", headers=MALLORY).status_code == 403

    link = client.post("/api/files/agent-source-url", headers=ALICE, json=LINK_BODY)
    assert link.json()["downloadUrl"] == lookup.json()["url"]

    behavior = client.post(
        "/api/prefetch/behavior",
        headers=ALICE,
        json={"conversationId": "conv-1", "event": "preview"},
    )
    assert behavior.status_code == 200

    assert client.post("/admin/prefetch/clear").status_code == 200
    lookup = client.get("/api/prefetch/msg-1/file-report", headers=ALICE)
    assert lookup.json()["prefetched"] is False


def test_conversation_deletion_and_purge(client: TestClient, cited: Path) -> None:
    resp = client.delete("/conversations/conv-1", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "deleted": 3}

    link = client.post("/api/files/agent-source-url", headers=ALICE, json=LINK_BODY)
    assert link.status_code == 403

    purge = client.post("/admin/purge")
    assert purge.status_code == 200
    assert set(purge.json()) == {"citations", "messages", "audit"}


def test_metrics_endpoint(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"ags_presigned_urls_generated_total" in resp.content


def test_file_metadata_belongs_to_its_first_registrant(client: TestClient, cited: Path, tmp_path: Path) -> None:
    secret = tmp_path / "server_secret.txt"
    secret.write_bytes(b"not for mallory")
    takeover = client.post(
        "/api/files/metadata",
        headers=MALLORY,
        json={"fileId": "file-report", "displayName": "secret.txt", "filepath": str(secret)},
    )
    assert takeover.status_code == 403

    assert client.get("/api/files/download/mallory/file-report", headers=MALLORY).status_code == 403
    download = client.get("/api/files/download/alice/file-report", headers=ALICE)
    assert download.content == cited.read_bytes()


def test_file_metadata_owner_and_path_are_not_caller_controlled(client: TestClient, tmp_path: Path) -> None:
    resp = client.post(
        "/api/files/metadata",
        headers=ALICE,
        json={"fileId": "file-own", "displayName": "own.txt", "userId": "mallory"},
    )
    assert resp.status_code == 200
    assert resp.json()["userId"] == "alice"

    escape = client.post(
        "/api/files/metadata",
        headers=ALICE,
        json={"fileId": "file-escape", "displayName": "passwd", "filepath": str(tmp_path / ".." / "passwd")},
    )
    assert escape.status_code == 400
    assert "storage root" in escape.json()["error"]


def test_default_signing_secret_is_flagged_at_startup(monkeypatch, caplog) -> None:
    monkeypatch.delenv("AGS_SIGNING_SECRET", raising=False)
    with caplog.at_level(logging.WARNING, logger="agent_sources.app"):
        with TestClient(app):
            pass
    assert any("signing_secret" in record.getMessage() for record in caplog.records)

import base64
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import DOC, SECRET
from texbox.api import create_app
from texbox.auth import issue_token


def _entries(jobs_dir):
    return sorted(jobs_dir.iterdir()) if jobs_dir.exists() else []


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_cors_allows_editor_origin_only(client):
    ok = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert ok.headers["access-control-allow-origin"] == "http://localhost:5173"

    r = client.options(
        "/compile",
        headers={"Origin": "http://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert "access-control-allow-origin" not in r.headers
    other = client.get("/health", headers={"Origin": "http://evil.example"})
    assert "access-control-allow-origin" not in other.headers


def test_wellformed_source_returns_pdf(client, auth_headers, jobs_dir):
    r = client.post("/compile", json={"source": DOC}, headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert 'filename="output.pdf"' in r.headers["content-disposition"]
    assert r.headers["x-job-id"]
    assert len(r.content) > 0
    assert r.content.startswith(b"%PDF")
    assert _entries(jobs_dir) == []


def test_legacy_route_and_json_mode(client, auth_headers):
    r = client.post(
        "/compile-latex",
        json={"source": DOC},
        headers={**auth_headers, "Accept": "application/json"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert base64.b64decode(body["pdfBase64"]).startswith(b"%PDF")


@pytest.mark.parametrize("payload", [{"source": ""}, {"source": "   \n"}, {}, {"source": 12}, {"text": DOC}])
def test_missing_source_is_400_without_workspace(client, auth_headers, jobs_dir, payload):
    before = _entries(jobs_dir)
    r = client.post("/compile", json=payload, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert r.json()["error"]
    assert _entries(jobs_dir) == before


def test_malformed_body_is_400(client, auth_headers):
    r = client.post("/compile", content=b"{not json", headers={**auth_headers, "Content-Type": "application/json"})
    assert r.status_code == 400


def test_oversized_source_is_413(settings, auth_headers):
    app = create_app(settings.model_copy(update={"max_source_bytes": 32}))
    with TestClient(app) as c:
        r = c.post("/compile", json={"source": DOC}, headers=auth_headers)
    assert r.status_code == 413
    assert r.json()["success"] is False


def test_compile_error_reports_line(client, auth_headers, jobs_dir):
    source = DOC.replace("Hello", "Hello\n\\badmacro")
    r = client.post("/compile", json={"source": source}, headers=auth_headers)
    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["status"] == "FAILED"
    assert body["errorLines"] == [4]
    assert "(line 4)" in body["error"]
    assert "! Undefined control sequence." in body["rawLog"]
    assert body["rawLog"] in body["errorLog"]
    assert _entries(jobs_dir) == []


def test_tectonic_style_error(client, auth_headers):
    source = DOC.replace("Hello", "Hello\n\\badmacro") + "%tectonic\n"
    r = client.post("/compile", json={"source": source}, headers=auth_headers)
    assert r.status_code == 500
    assert r.json()["errorLines"] == [4]


def test_exit_zero_without_output(client, auth_headers, jobs_dir):
    r = client.post("/compile", json={"source": DOC + "%nopdf\n"}, headers=auth_headers)
    assert r.status_code == 500
    body = r.json()
    assert body["reason"] == "no_output"
    assert "No PDF" in body["error"]
    assert _entries(jobs_dir) == []


def test_hanging_compiler_times_out(settings, auth_headers, jobs_dir):
    app = create_app(settings.model_copy(update={"timeout_s": 1, "kill_grace_s": 1}))
    with TestClient(app) as c:
        start = time.monotonic()
        r = c.post("/compile", json={"source": DOC + "%hang\n"}, headers=auth_headers)
        elapsed = time.monotonic() - start
    assert r.status_code == 500
    assert elapsed < 1 + 1 + 2
    body = r.json()
    assert body["status"] == "TIMEOUT"
    assert "timed out" in body["error"]
    assert "pid=" in body["rawLog"]
    assert _entries(jobs_dir) == []


def test_spawn_error_is_reported_as_server_problem(settings, auth_headers):
    app = create_app(settings.model_copy(update={"compiler": "/nonexistent/tectonic"}))
    with TestClient(app) as c:
        r = c.post("/compile", json={"source": DOC}, headers=auth_headers)
    assert r.status_code == 500
    assert r.json()["reason"] == "spawn_error"
    assert "server configuration" in r.json()["error"]


@pytest.mark.parametrize(
    "headers, status",
    [
        ({}, 401),
        ({"Authorization": "Basic dXNlcjpwYXNz"}, 401),
        ({"Authorization": "Bearer not-a-token"}, 403),
        ({"Authorization": f"Bearer {issue_token('wrong', 1)}"}, 403),
        ({"Authorization": f"Bearer {issue_token(SECRET, 1, ttl=timedelta(seconds=-30))}"}, 403),
    ],
)
def test_auth_gate_allocates_nothing(client, jobs_dir, headers, status):
    before = _entries(jobs_dir)
    r = client.post("/compile", json={"source": DOC}, headers=headers)
    assert r.status_code == status
    assert _entries(jobs_dir) == before


def test_unconfigured_secret_fails_closed(settings):
    app = create_app(settings.model_copy(update={"jwt_secret": None}))
    with TestClient(app) as c:
        r = c.post("/compile", json={"source": DOC}, headers={"Authorization": f"Bearer {issue_token(SECRET, 1)}"})
    assert r.status_code == 503


def test_unexpected_service_error_becomes_500(client, auth_headers, monkeypatch):
    svc = client.app.state.service

    def broken(source, user=None):
        raise OSError("job root vanished")

    monkeypatch.setattr(svc, "compile", broken)
    r = client.post("/compile", json={"source": DOC}, headers=auth_headers)
    assert r.status_code == 500
    assert r.json()["success"] is False
    assert "job root vanished" in r.json()["error"]

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from app.api import routes as routes_module
from app.core.config import settings
from app.main import app

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(pipeline):
    """TestClient against the real app, wired to the in-memory pipeline."""
    app.state.pipeline = pipeline
    # Disable API-key verification during tests
    app.dependency_overrides[routes_module.verify_api_key] = lambda: True
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.pipeline = None


# ---------------------------------------------------------------------------
# /api/projects/{id}/questions/{id}/stance-analysis
# ---------------------------------------------------------------------------


def test_stance_analysis_success(client, fake_client):
    resp = client.get("/api/projects/p1/questions/q1/stance-analysis")

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["question"] == "Should X?"
    assert body["stance_analysis"]["Yes"] == {"count": 2, "summary": "for"}
    assert body["analysis"] == "Most comments agree."
    assert fake_client.kinds() == ["stance"]


def test_stance_analysis_force_and_custom_prompt(client, fake_client):
    client.get("/api/projects/p1/questions/q1/stance-analysis")
    fake_client.reset()

    resp = client.get(
        "/api/projects/p1/questions/q1/stance-analysis",
        params={"forceRegenerate": "true", "customPrompt": "Only count paper comments."},
    )

    assert resp.status_code == status.HTTP_200_OK
    assert fake_client.kinds() == ["stance"]
    assert "Only count paper comments." in fake_client.calls[0][2]


@pytest.mark.parametrize(
    "path",
    [
        "/api/projects/missing/questions/q1/stance-analysis",
        "/api/projects/p1/questions/q9/stance-analysis",
        "/api/projects/missing/analysis",
        "/api/projects/missing/visual-analysis",
        "/api/projects/missing/llms-txt",
        "/api/projects/missing/export-csv",
    ],
)
def test_unknown_project_or_question_is_404(client, fake_client, path):
    resp = client.get(path)

    assert resp.status_code == status.HTTP_404_NOT_FOUND
    assert "not found" in resp.json()["detail"]
    assert fake_client.calls == []


def test_invalid_force_flag_is_rejected(client, fake_client):
    resp = client.get("/api/projects/p1/analysis", params={"forceRegenerate": "notabool"})

    assert resp.status_code == 422
    assert resp.json()["error"] == "Input validation failed"
    assert fake_client.calls == []


def test_generation_failure_is_500(client, fake_client):
    fake_client.failures.add("Should X?")

    resp = client.get("/api/projects/p1/questions/q1/stance-analysis")

    assert resp.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "No completion content" in resp.json()["detail"]


def test_missing_api_key_is_rejected(pipeline):
    app.state.pipeline = pipeline
    try:
        resp = TestClient(app).get("/api/projects/p1/analysis")
    finally:
        app.state.pipeline = None

    assert resp.status_code == status.HTTP_403_FORBIDDEN


def test_configured_api_key_is_accepted(pipeline, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "secret", raising=False)
    app.state.pipeline = pipeline
    try:
        resp = TestClient(app).get("/api/projects/p1/export-csv", headers={"X-API-Key": "secret"})
    finally:
        app.state.pipeline = None

    assert resp.status_code == status.HTTP_200_OK


# ---------------------------------------------------------------------------
# /api/projects/{id}/analysis and /visual-analysis
# ---------------------------------------------------------------------------


def test_project_analysis(client, fake_client):
    resp = client.get("/api/projects/p1/analysis")

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["project_name"] == "Riverside park"
    assert body["overall_analysis"] == "# Overall report\nMost comments agree."
    assert sorted(fake_client.kinds()) == ["narrative", "stance", "stance"]


def test_partial_stance_failure_is_500(client, fake_client):
    fake_client.failures.add("Should Y?")

    resp = client.get("/api/projects/p1/analysis")

    assert resp.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "q2" in resp.json()["detail"]


def test_visual_analysis(client):
    resp = client.get("/api/projects/p1/visual-analysis")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["overall_analysis"] == "<html><body>report</body></html>"


# ---------------------------------------------------------------------------
# /api/projects/{id}/llms-txt
# ---------------------------------------------------------------------------


def test_llms_txt_returns_both_documents(client):
    resp = client.get("/api/projects/p1/llms-txt")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json() == {
        "project_name": "Riverside park",
        "llms_txt": "# Project",
        "llms_full_txt": "# Project (detailed)",
    }


def test_llms_txt_download_full_generates_only_that_document(client, fake_client):
    client.get("/api/projects/p1/analysis")
    fake_client.reset()

    resp = client.get("/api/projects/p1/llms-txt/download", params={"type": "full"})

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"].startswith("text/markdown")
    assert resp.headers["content-disposition"] == "attachment; filename=llms-full.txt"
    assert resp.text == "# Project (detailed)"
    assert fake_client.kinds() == ["extended"]


def test_llms_txt_download_defaults_to_basic(client, fake_client):
    resp = client.get("/api/projects/p1/llms-txt/download")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-disposition"] == "attachment; filename=llms.txt"
    assert "extended" not in fake_client.kinds()


def test_llms_txt_download_rejects_unknown_type(client):
    resp = client.get("/api/projects/p1/llms-txt/download", params={"type": "everything"})

    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# /api/projects/{id}/export-csv
# ---------------------------------------------------------------------------


def test_export_csv(client, fake_client):
    resp = client.get("/api/projects/p1/export-csv")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["content-disposition"] == "attachment; filename=project-p1-export.csv"
    assert resp.text.splitlines()[0] == "project_name,comment_id,source_type,content"
    assert fake_client.calls == []


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json() == {"status": "ok"}

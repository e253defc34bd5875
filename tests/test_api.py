import io
import math
from decimal import Decimal

from openpyxl import load_workbook

from casegen.services.export_service import XLSX_MEDIA_TYPE
from tests.conftest import SAMPLE_MARKDOWN, completion, connection_error, png_bytes

OWNER = {"X-User-Email": "qa@example.com"}
OTHER = {"X-User-Email": "dev@example.com"}


def generate(test_client, issue_key="PROJ-1", headers=OWNER, **extra):
    return test_client.post("/api/v1/generations/testcases", json={"issue_key": issue_key, **extra}, headers=headers)


def test_health_check(test_client):
    """Test health check endpoint"""
    response = test_client.get("/api/v1/health/")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert "version" in data
    assert "environment" in data


def test_readiness_check(test_client):
    """Test readiness check endpoint"""
    response = test_client.get("/api/v1/health/readiness")
    assert response.status_code == 200

    data = response.json()
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["jira"] == "ok"
    assert data["image_sessions"] == 0
    assert "timestamp" in data


def test_principal_header_is_required(test_client):
    assert test_client.get("/api/v1/generations/").status_code == 401
    assert generate(test_client, headers={"X-User-Email": "   "}).status_code == 401


def test_preflight_estimates_cost(test_client):
    response = test_client.post("/api/v1/generations/preflight", json={"issue_key": "PROJ-1"}, headers=OWNER)
    assert response.status_code == 200

    data = response.json()
    assert data["title"] == "Login"
    assert data["image_attachments"] == 1
    expected_tokens = math.ceil(len("Login Users sign in with email and password.") / 4) + 200
    assert data["estimated_tokens"] == expected_tokens
    assert data["estimated_cost"] == "0.0048"


def test_generate_test_cases(test_client, fake_openai):
    response = generate(test_client)
    assert response.status_code == 200

    data = response.json()
    generation_id = data["generation_id"]
    assert data["issue_key"] == "PROJ-1"
    assert data["filename"] == f"PROJ-1_testcases_{generation_id}.md"
    assert data["content"] == SAMPLE_MARKDOWN.strip()
    assert Decimal(data["cost"]) == Decimal("0.00045")
    assert data["token_usage"]["total_tokens"] == 1500
    assert data["images_used"] == 0

    call = fake_openai.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    user_text = call["messages"][1]["content"]
    assert "JIRA issue: PROJ-1" in user_text
    assert "Acceptance Criteria:\n- Valid credentials open the dashboard" in user_text

    stored = test_client.get(f"/api/v1/generations/{generation_id}", headers=OWNER).json()
    assert stored["status"] == "completed"
    assert stored["mode"] == "manual"
    assert stored["current_version"] == 1
    assert stored["versions"] == []
    assert Decimal(stored["cost"]) == Decimal("0.00045")


def test_auto_mode_is_recorded(test_client):
    data = generate(test_client, auto_mode=True).json()

    stored = test_client.get(f"/api/v1/generations/{data['generation_id']}", headers=OWNER).json()
    assert stored["mode"] == "auto"


def test_missing_title_heading_is_added(test_client, fake_openai):
    fake_openai.completions.queue = [completion("### Test Case 1: Only one\n- **Priority**: High")]

    content = generate(test_client).json()["content"]

    assert content.startswith("### Test Case 1")

    fake_openai.completions.queue = [completion("Test Case 1: Plain\nPriority: High")]
    content = generate(test_client).json()["content"]
    assert content.startswith("# Test Cases for PROJ-1: Login\n\nTest Case 1: Plain")


def test_generation_failure_is_persisted(test_client, fake_openai, sleeps):
    fake_openai.completions.queue = [connection_error() for _ in range(4)]

    response = generate(test_client)

    assert response.status_code == 500
    assert sleeps.delays == [2.0, 4.0, 8.0]
    assert len(fake_openai.completions.calls) == 4
    [record] = test_client.get("/api/v1/generations/", headers=OWNER).json()
    assert record["status"] == "failed"
    assert record["error"].startswith("OpenAI generation failed")
    assert record["completed_at"] is not None


def test_unknown_issue_is_404_and_recorded(test_client, fake_openai):
    response = generate(test_client, issue_key="PROJ-404")

    assert response.status_code == 404
    assert fake_openai.completions.calls == []
    [record] = test_client.get("/api/v1/generations/", headers=OWNER).json()
    assert record["status"] == "failed"
    assert "PROJ-404" in record["error"]


def test_blank_issue_key_is_rejected(test_client):
    assert generate(test_client, issue_key="").status_code == 422
    assert generate(test_client, issue_key="   ").status_code == 400


def test_list_is_newest_first_and_owner_scoped(test_client):
    first = generate(test_client).json()["generation_id"]
    second = generate(test_client).json()["generation_id"]
    generate(test_client, headers=OTHER)

    listed = test_client.get("/api/v1/generations/", headers=OWNER).json()

    assert [g["id"] for g in listed] == [second, first]
    assert test_client.get(f"/api/v1/generations/{first}", headers=OTHER).status_code == 404


def test_edit_content_keeps_versions(test_client):
    generation_id = generate(test_client).json()["generation_id"]
    url = f"/api/v1/generations/{generation_id}/content"

    edited = test_client.put(url, json={"content": "# Edited", "notes": "shorter"}, headers=OWNER)
    assert edited.status_code == 200
    assert edited.json()["current_version"] == 2
    assert edited.json()["content"] == "# Edited"

    # same content again is not a new version
    again = test_client.put(url, json={"content": "# Edited"}, headers=OWNER).json()
    assert again["current_version"] == 2

    test_client.put(url, json={"content": "# Edited twice"}, headers=OWNER)
    versions = test_client.get(f"/api/v1/generations/{generation_id}/versions", headers=OWNER).json()
    assert [v["version"] for v in versions] == [1, 2]
    assert versions[0]["content"] == SAMPLE_MARKDOWN.strip()
    assert versions[0]["notes"] == "shorter"
    assert versions[0]["updated_by"] == "qa@example.com"
    assert versions[1]["content"] == "# Edited"

    stored = test_client.get(f"/api/v1/generations/{generation_id}", headers=OWNER).json()
    assert stored["current_version"] == 3
    assert stored["content"] == "# Edited twice"


def test_failed_generation_cannot_be_edited(test_client, fake_openai):
    fake_openai.completions.queue = [connection_error() for _ in range(4)]
    generate(test_client)
    [record] = test_client.get("/api/v1/generations/", headers=OWNER).json()

    response = test_client.put(f"/api/v1/generations/{record['id']}/content",
                               json={"content": "anything"}, headers=OWNER)

    assert response.status_code == 409


def test_parsed_test_cases(test_client):
    generation_id = generate(test_client).json()["generation_id"]

    rows = test_client.get(f"/api/v1/generations/{generation_id}/testcases", headers=OWNER).json()

    assert [r["id"] for r in rows] == ["Test Case 1", "Test Case 2", "Test Case 3"]
    assert rows[0]["expected_result"] == "Dashboard is shown"


def test_downloads(test_client):
    generation_id = generate(test_client).json()["generation_id"]

    markdown = test_client.get(f"/api/v1/generations/{generation_id}/download/markdown", headers=OWNER)
    assert markdown.status_code == 200
    assert markdown.headers["content-type"].startswith("text/markdown")
    assert f'filename="PROJ-1_testcases_{generation_id}.md"' in markdown.headers["content-disposition"]
    assert markdown.text == SAMPLE_MARKDOWN.strip()

    xlsx = test_client.get(f"/api/v1/generations/{generation_id}/download/xlsx", headers=OWNER)
    assert xlsx.status_code == 200
    assert xlsx.headers["content-type"] == XLSX_MEDIA_TYPE
    assert f'filename="PROJ-1_testcases_{generation_id}.xlsx"' in xlsx.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(xlsx.content)).active
    assert ws.max_row == 4

    assert test_client.get(f"/api/v1/generations/{generation_id}/download/xlsx", headers=OTHER).status_code == 404


def test_projects_are_tracked(test_client):
    generate(test_client)
    generate(test_client)

    projects = test_client.get("/api/v1/projects/", headers=OWNER).json()

    assert [p["project_key"] for p in projects] == ["PROJ"]
    assert projects[0]["total_generations"] == 2
    assert projects[0]["created_by"] == "qa@example.com"


def test_image_session_lifecycle(test_client, upload_dir):
    files = [
        ("images", ("one.png", png_bytes(), "image/png")),
        ("images", ("two.png", png_bytes(size=(30, 30)), "image/png")),
    ]
    response = test_client.post("/api/v1/images/sessions", files=files, headers=OWNER)
    assert response.status_code == 201
    session_id = response.json()["session_id"]
    assert session_id.startswith("img_session_")
    assert [i["original_name"] for i in response.json()["images"]] == ["one.png", "two.png"]
    assert len(list(upload_dir.iterdir())) == 2

    listed = test_client.get("/api/v1/images/sessions", headers=OWNER).json()
    assert [s["session_id"] for s in listed] == [session_id]
    assert test_client.get(f"/api/v1/images/sessions/{session_id}", headers=OTHER).status_code == 404

    extended = test_client.post(f"/api/v1/images/sessions/{session_id}/extend", headers=OWNER)
    assert extended.status_code == 200
    assert extended.json()["image_count"] == 2

    deleted = test_client.delete(f"/api/v1/images/sessions/{session_id}", headers=OWNER)
    assert deleted.status_code == 200
    assert list(upload_dir.iterdir()) == []
    assert test_client.get(f"/api/v1/images/sessions/{session_id}", headers=OWNER).status_code == 404


def test_generation_with_images_uses_vision_model_and_consumes_session(test_client, fake_openai, upload_dir):
    files = [("images", ("screen.png", png_bytes(), "image/png"))]
    session_id = test_client.post("/api/v1/images/sessions", files=files, headers=OWNER).json()["session_id"]

    data = generate(test_client, image_session_id=session_id).json()

    assert data["images_used"] == 1
    call = fake_openai.completions.calls[-1]
    assert call["model"] == "gpt-4o"
    parts = call["messages"][1]["content"]
    assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")
    assert test_client.get(f"/api/v1/images/sessions/{session_id}", headers=OWNER).status_code == 404
    assert list(upload_dir.iterdir()) == []


def test_foreign_image_session_is_ignored(test_client, fake_openai):
    files = [("images", ("screen.png", png_bytes(), "image/png"))]
    session_id = test_client.post("/api/v1/images/sessions", files=files, headers=OTHER).json()["session_id"]

    data = generate(test_client, image_session_id=session_id).json()

    assert data["images_used"] == 0
    assert fake_openai.completions.calls[-1]["model"] == "gpt-4o-mini"
    # the owner's session is untouched
    assert test_client.get(f"/api/v1/images/sessions/{session_id}", headers=OTHER).status_code == 200


def test_rejected_upload_keeps_nothing(test_client, upload_dir):
    files = [
        ("images", ("good.png", png_bytes(), "image/png")),
        ("images", ("notes.txt", b"hello", "text/plain")),
    ]

    response = test_client.post("/api/v1/images/sessions", files=files, headers=OWNER)

    assert response.status_code == 400
    assert list(upload_dir.iterdir()) == []
    assert test_client.get("/api/v1/images/sessions", headers=OWNER).json() == []


def test_too_many_files(test_client):
    files = [("images", (f"{i}.png", png_bytes(), "image/png")) for i in range(6)]

    assert test_client.post("/api/v1/images/sessions", files=files, headers=OWNER).status_code == 400

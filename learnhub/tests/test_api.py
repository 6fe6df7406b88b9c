"""
API tests for the LearnHub backend.

The application runs on the in-memory store; the caller identity is
overridden except in the authentication tests, which sign real tokens.
"""

import datetime
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi.testclient import TestClient

from learnhub.common.auth import Identity, get_current_identity
from learnhub.common.auth.dependencies import decode_identity
from learnhub.common.error_handling import AuthenticationError, StoreError
from learnhub.common.store.memory import MemoryTableClient
from learnhub.config import Settings
from learnhub.main import create_app

from conftest import STUDENT_ID, TEMPLATE_ID, build_seed

SECRET = "learnhub-test-signing-secret-0123456789"
STUDENT_API = "/v1/student/assessments"
ADMIN_API = "/v1/admin/assessments"


def make_app(user_id=STUDENT_ID, override_identity=True, **seed_args):
    app = create_app(
        settings=Settings(STORE_CREDENTIAL_MODE="memory", JWT_SECRET=SECRET),
        client=MemoryTableClient(build_seed(**seed_args)),
    )
    if override_identity:
        app.dependency_overrides[get_current_identity] = lambda: Identity(user_id=user_id, access_token="t")
    return app


def sign(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def client():
    return TestClient(make_app())


def start(client, template_id=TEMPLATE_ID):
    return client.post(f"{STUDENT_API}/start", json={"template_id": template_id})


class TestStudentRoutes:
    def test_root(self, client):
        assert client.get("/").json()["message"] == "Welcome to LearnHub Backend"

    def test_full_attempt(self, client):
        response = start(client)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "success"
        token = body["data"]["session_token"]

        answered = client.post(f"{STUDENT_API}/response", json={
            "session_token": token, "question_id": "q1", "selected_option_id": "q1-o0",
        })
        assert answered.status_code == 200
        assert answered.json()["data"]["is_correct"] is True

        finished = client.post(f"{STUDENT_API}/finish", json={"session_token": token})
        assert finished.status_code == 200
        summary = finished.json()["data"]
        assert (summary["percentage_score"], summary["passed"]) == (10, False)

        results = client.get(f"{STUDENT_API}/results/{summary['session_id']}")
        assert results.json()["data"]["correct_answers"] == 1

        history = client.get(f"{STUDENT_API}/history", params={"status": "completed"})
        assert history.json()["data"]["pagination"]["total"] == 1

    def test_error_status_mapping(self, client):
        token = start(client).json()["data"]["session_token"]

        again = start(client)
        assert again.status_code == 400
        assert again.json() == {
            "status": "error",
            "code": "active_session_exists",
            "message": again.json()["message"],
            "details": {"template_id": TEMPLATE_ID},
        }

        missing = start(client, template_id="nope")
        assert missing.status_code == 404
        assert missing.json()["code"] == "template_not_found"

        both = client.post(f"{STUDENT_API}/response", json={
            "session_token": token, "question_id": "q1", "selected_option_id": "q1-o0", "text_answer": "x",
        })
        assert both.status_code == 400
        assert both.json()["code"] == "validation_error"

        unknown = client.get(f"{STUDENT_API}/session/not-a-token")
        assert unknown.status_code == 404

    def test_private_template_forbidden(self):
        client = TestClient(make_app(template={"is_public": False}))
        response = client.get(f"{STUDENT_API}/templates/{TEMPLATE_ID}/preview")
        assert response.status_code == 403
        assert response.json()["code"] == "template_unavailable"

    def test_request_validation(self, client):
        response = client.post(f"{STUDENT_API}/start", json={})
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["details"][0]["location"] == ["body", "template_id"]

        bad_status = client.get(f"{STUDENT_API}/history", params={"status": "paused"})
        assert bad_status.status_code == 422

        negative = client.post(f"{STUDENT_API}/response", json={
            "session_token": "t", "question_id": "q1", "text_answer": "x", "time_spent_seconds": -5,
        })
        assert negative.status_code == 400
        assert negative.json()["code"] == "validation_error"

    def test_store_failure_hides_details(self):
        app = make_app()
        app.state.store_client.select = AsyncMock(side_effect=StoreError("boom", status=500, table="assessment_templates"))
        response = TestClient(app).get(f"{STUDENT_API}/available")
        assert response.status_code == 500
        assert "details" not in response.json()


class TestQuickRoutes:
    def test_start_finish_latest(self, client):
        started = client.post("/v1/assessments/start")
        assert started.status_code == 201
        assessment_id = started.json()["data"]["assessment_id"]

        finished = client.post("/v1/assessments/finish", json={
            "assessment_id": assessment_id,
            "responses": [{"q_index": 0, "question_id": "q1", "answer": 0}],
        })
        assert finished.status_code == 200
        assert finished.json()["data"]["score"] == 100

        again = client.post("/v1/assessments/finish", json={
            "assessment_id": assessment_id,
            "responses": [{"q_index": 0, "question_id": "q1", "answer": 0}],
        })
        assert again.status_code == 400
        assert again.json()["code"] == "invalid_session_state"

        latest = client.get("/v1/assessments/latest").json()["data"]["latest"]
        assert latest["id"] == assessment_id

    def test_finish_requires_responses(self, client):
        response = client.post("/v1/assessments/finish", json={"assessment_id": "a", "responses": []})
        assert response.status_code == 422


class TestAdminRoutes:
    def test_student_is_rejected(self, client):
        response = client.get(f"{ADMIN_API}/templates")
        assert response.status_code == 403
        assert response.json()["code"] == "authorization_error"

    def test_admin_authoring(self):
        client = TestClient(make_app(user_id="admin-1"))

        listed = client.get(f"{ADMIN_API}/templates")
        assert listed.status_code == 200
        assert [t["title"] for t in listed.json()["data"]] == ["Python Basics"]

        created = client.post(f"{ADMIN_API}/questions", json={
            "question_type": "mcq",
            "question_text": "Pick the list literal",
            "difficulty_level": "easy",
            "options": [{"option_text": "[]", "is_correct": True}, {"option_text": "{}"}],
        })
        assert created.status_code == 201
        question_id = created.json()["data"]["id"]
        assert created.json()["data"]["created_by"] == "admin-1"

        template = client.post(f"{ADMIN_API}/templates", json={"title": "Lists", "question_ids": [question_id]})
        assert template.status_code == 201
        assert template.json()["data"]["total_questions"] == 1

        unscorable = client.post(f"{ADMIN_API}/questions", json={
            "question_type": "mcq", "question_text": "No answer", "options": [{"option_text": "a"}],
        })
        assert unscorable.status_code == 400

        bad_level = client.post(f"{ADMIN_API}/questions", json={
            "question_type": "mcq", "question_text": "x", "difficulty_level": "extreme",
        })
        assert bad_level.status_code == 422

        assert client.delete(f"{ADMIN_API}/questions/missing").status_code == 404


class TestAuthentication:
    def test_bearer_token_resolves_identity(self):
        client = TestClient(make_app(override_identity=False))
        token = sign({"sub": STUDENT_ID, "email": "s@example.com"})
        response = client.get(f"{STUDENT_API}/available", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["data"][0]["id"] == TEMPLATE_ID

    def test_missing_or_malformed_header(self):
        client = TestClient(make_app(override_identity=False))
        assert client.get(f"{STUDENT_API}/available").status_code == 401
        response = client.get(f"{STUDENT_API}/available", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
        assert response.json()["code"] == "authentication_error"

    def test_expired_token(self):
        expired = sign({"sub": STUDENT_ID, "exp": datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=1)})
        with pytest.raises(AuthenticationError) as info:
            decode_identity(expired, SECRET)
        assert info.value.message == "Token has expired"

    def test_wrong_secret_and_audience(self):
        token = sign({"sub": STUDENT_ID, "aud": "authenticated"})
        with pytest.raises(AuthenticationError):
            decode_identity(token, "another-secret-another-secret-0123")
        with pytest.raises(AuthenticationError):
            decode_identity(token, SECRET, audience="service")
        assert decode_identity(token, SECRET, audience="authenticated").user_id == STUDENT_ID

    def test_subject_required(self):
        with pytest.raises(AuthenticationError):
            decode_identity(sign({"email": "x@example.com"}), SECRET)

    def test_unverified_only_when_allowed(self):
        token = sign({"sub": STUDENT_ID}, secret="some-other-secret-some-other-0123")
        with pytest.raises(AuthenticationError):
            decode_identity(token, None)
        assert decode_identity(token, None, allow_unverified=True).access_token == token

"""
Tests for the data store layer: query rendering, credential resolution,
the PostgREST client (mocked transport) and the in-memory client.
"""

import unittest
from unittest.mock import AsyncMock, patch

import pytest

from learnhub.common.error_handling import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    StoreError,
    StoreUnavailableError,
)
from learnhub.common.store.client import PostgrestClient, StoreResponse, parse_content_range
from learnhub.common.store.credentials import (
    CredentialMode,
    ServiceRoleCredentials,
    looks_like_jwt,
    resolve_credentials,
)
from learnhub.common.store.memory import MemoryTableClient
from learnhub.common.store.query import StoreQuery, sanitize_search_term

SERVICE_JWT = "eyJhbGciOiJIUzI1NiJ9." + "a" * 60 + ".signature"


class TestStoreQuery(unittest.TestCase):
    """Test query rendering."""

    def test_render_filters_order_and_paging(self):
        query = (
            StoreQuery("student_assessment_sessions")
            .select("id", "status")
            .eq("student_id", "s1")
            .eq("status", "in_progress")
            .order("started_at", descending=True)
            .limit(10)
            .offset(20)
        )
        self.assertEqual(query.to_params(), [
            ("select", "id,status"),
            ("student_id", "eq.s1"),
            ("status", "eq.in_progress"),
            ("order", "started_at.desc"),
            ("limit", "10"),
            ("offset", "20"),
        ])

    def test_eq_none_renders_is_null(self):
        params = StoreQuery("assessments").eq("completed_at", None).to_params(include_select=False)
        self.assertEqual(params, [("completed_at", "is.null")])

    def test_in_list_quotes_members(self):
        query = StoreQuery("assessment_questions").in_("id", ['a', 'b"c', None, ""])
        self.assertIn(("id", 'in.("a","b""c")'), query.to_params())

    def test_active_or_unset(self):
        query = StoreQuery("assessment_questions").active_or_unset("is_active")
        self.assertIn(("or", "(is_active.is.null,is_active.eq.true)"), query.to_params())

    def test_ilike_strips_metacharacters(self):
        query = StoreQuery("assessment_questions").ilike("question_text", 'pan*das,(x)"')
        self.assertIn(("question_text", "ilike.*pandasx*"), query.to_params())
        self.assertEqual(sanitize_search_term("*%"), "")
        self.assertEqual(StoreQuery("assessment_questions").ilike("question_text", "*").filters, ())

    def test_unknown_table_and_column_rejected(self):
        with self.assertRaises(ValueError):
            StoreQuery("users")
        with self.assertRaises(ValueError):
            StoreQuery("assessment_questions").eq("question_text;drop", "x")
        with self.assertRaises(ValueError):
            StoreQuery("assessment_questions").order("password")

    def test_queries_are_immutable(self):
        base = StoreQuery("assessments")
        narrowed = base.eq("user_id", "u1")
        self.assertEqual(base.filters, ())
        self.assertEqual(len(narrowed.filters), 1)

    def test_without_paging_keeps_filters(self):
        query = StoreQuery("assessments").eq("user_id", "u1").order("started_at").limit(5).offset(5)
        self.assertEqual(query.without_paging().to_params(include_select=False), [("user_id", "eq.u1")])


class TestCredentials(unittest.TestCase):
    """Test credential mode resolution."""

    def test_looks_like_jwt(self):
        self.assertTrue(looks_like_jwt(SERVICE_JWT))
        self.assertFalse(looks_like_jwt("short.a.b"))
        self.assertFalse(looks_like_jwt(None))

    def test_auto_prefers_service_role(self):
        strategy = resolve_credentials("auto", service_key=SERVICE_JWT, anon_key="anon")
        self.assertIs(strategy.mode, CredentialMode.SERVICE_ROLE)
        self.assertEqual(strategy.headers("ignored")["Authorization"], f"Bearer {SERVICE_JWT}")

    def test_auto_falls_back_to_user_token(self):
        strategy = resolve_credentials("auto", service_key="not-a-jwt", anon_key="anon")
        self.assertIs(strategy.mode, CredentialMode.USER_TOKEN)
        headers = strategy.headers("user-jwt")
        self.assertEqual(headers["apikey"], "anon")
        self.assertEqual(headers["Authorization"], "Bearer user-jwt")

    def test_user_token_required(self):
        strategy = resolve_credentials("user_token", anon_key="anon")
        with self.assertRaises(AuthenticationError):
            strategy.headers(None)

    def test_missing_keys_fail_at_resolution(self):
        with self.assertRaises(ConfigurationError):
            resolve_credentials("auto")
        with self.assertRaises(ConfigurationError):
            resolve_credentials("service_role", anon_key="anon")
        with self.assertRaises(ConfigurationError):
            resolve_credentials("bogus")

    def test_memory_mode(self):
        self.assertIs(resolve_credentials("memory").mode, CredentialMode.MEMORY)


def test_parse_content_range():
    assert parse_content_range("0-9/42") == 42
    assert parse_content_range("*/0") == 0
    assert parse_content_range("0-9/*") is None
    assert parse_content_range(None) is None


@pytest.fixture
def client():
    return PostgrestClient("http://store.local/rest/v1/", ServiceRoleCredentials(SERVICE_JWT), max_retries=2)


@pytest.mark.asyncio
async def test_select_sends_rendered_query(client):
    rows = [{"id": "q1"}]
    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(200, rows))) as send:
        result = await client.select(StoreQuery("assessment_questions").eq("id", "q1"))

    assert result == rows
    method, table = send.await_args.args
    assert (method, table) == ("GET", "assessment_questions")
    assert ("id", "eq.q1") in send.await_args.kwargs["params"]
    assert send.await_args.kwargs["headers"]["apikey"] == SERVICE_JWT


@pytest.mark.asyncio
async def test_count_reads_content_range(client):
    response = StoreResponse(200, [{"id": "x"}], {"Content-Range": "0-0/42"})
    with patch.object(client, "_send", new=AsyncMock(return_value=response)) as send:
        total = await client.count(StoreQuery("assessments").eq("user_id", "u1").limit(5))

    assert total == 42
    assert send.await_args.kwargs["headers"]["Prefer"] == "count=exact"
    assert ("limit", "1") in send.await_args.kwargs["params"]


@pytest.mark.asyncio
async def test_reads_are_retried_on_upstream_failure(client):
    failures = [StoreResponse(503, {"message": "down"}), StoreResponse(502, None), StoreResponse(200, [])]
    with patch.object(client, "_send", new=AsyncMock(side_effect=failures)) as send, \
            patch("learnhub.common.error_handling.asyncio.sleep", new=AsyncMock()):
        assert await client.select(StoreQuery("assessments")) == []
    assert send.await_count == 3


@pytest.mark.asyncio
async def test_reads_give_up_after_max_retries(client):
    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(500, None))) as send, \
            patch("learnhub.common.error_handling.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(StoreUnavailableError):
            await client.select(StoreQuery("assessments"))
    assert send.await_count == 3


@pytest.mark.asyncio
async def test_writes_are_sent_once(client):
    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(503, None))) as send:
        with pytest.raises(StoreUnavailableError):
            await client.insert("assessments", [{"user_id": "u1"}])
    assert send.await_count == 1


@pytest.mark.asyncio
async def test_conflict_and_client_errors(client):
    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(409, {"code": "23505"}))):
        with pytest.raises(ConflictError):
            await client.insert("student_assessment_responses", [{"session_id": "s", "question_id": "q"}])

    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(400, {"message": "bad"}))):
        with pytest.raises(StoreError) as info:
            await client.select(StoreQuery("assessments"))
    assert info.value.status == 400


@pytest.mark.asyncio
async def test_malformed_filter_value_matches_nothing(client):
    invalid_uuid = StoreResponse(400, {
        "code": "22P02", "message": 'invalid input syntax for type uuid: "not-a-uuid"',
    })
    with patch.object(client, "_send", new=AsyncMock(return_value=invalid_uuid)) as send:
        assert await client.select(StoreQuery("student_assessment_sessions").eq("session_token", "not-a-uuid")) == []
        assert await client.count(StoreQuery("assessments").eq("id", "not-a-uuid")) == 0
        assert await client.update(StoreQuery("assessments").eq("id", "not-a-uuid"), {"score": 1}) == []
        assert await client.delete(StoreQuery("assessments").eq("id", "not-a-uuid")) == 0
    assert send.await_count == 4

    with patch.object(client, "_send", new=AsyncMock(return_value=invalid_uuid)):
        with pytest.raises(StoreError):
            await client.insert("assessments", [{"user_id": "not-a-uuid"}])


@pytest.mark.asyncio
async def test_update_and_delete_return_representation(client):
    updated = [{"id": "a1", "score": 80}]
    with patch.object(client, "_send", new=AsyncMock(return_value=StoreResponse(200, updated))) as send:
        rows = await client.update(StoreQuery("assessments").eq("id", "a1"), {"score": 80})
        assert rows == updated
        assert send.await_args.args[0] == "PATCH"
        assert send.await_args.kwargs["headers"]["Prefer"] == "return=representation"
        assert ("select", "*") not in send.await_args.kwargs["params"]

        assert await client.delete(StoreQuery("assessments").eq("id", "a1")) == 1


class TestMemoryTableClient:
    """Test the in-memory client's constraint handling."""

    @pytest.mark.asyncio
    async def test_unique_response_per_question(self):
        store = MemoryTableClient()
        await store.insert("student_assessment_responses", [{"session_id": "s1", "question_id": "q1"}])
        with pytest.raises(ConflictError):
            await store.insert("student_assessment_responses", [{"session_id": "s1", "question_id": "q1"}])
        assert await store.count(StoreQuery("student_assessment_responses")) == 1

    @pytest.mark.asyncio
    async def test_one_in_progress_session_per_template(self):
        store = MemoryTableClient()
        row = {"student_id": "s", "template_id": "t", "status": "in_progress"}
        await store.insert("student_assessment_sessions", [dict(row, session_token="a")])
        with pytest.raises(ConflictError):
            await store.insert("student_assessment_sessions", [dict(row, session_token="b")])
        await store.insert("student_assessment_sessions", [dict(row, session_token="c", status="completed")])

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_no_rows(self):
        store = MemoryTableClient()
        batch = [
            {"template_id": "t", "question_id": "q1"},
            {"template_id": "t", "question_id": "q1"},
        ]
        with pytest.raises(ConflictError):
            await store.insert("assessment_template_questions", batch)
        assert store.tables["assessment_template_questions"] == []

    @pytest.mark.asyncio
    async def test_delete_cascades(self):
        store = MemoryTableClient({
            "assessment_questions": [{"id": "q1", "question_type": "mcq"}],
            "assessment_question_options": [{"question_id": "q1", "option_text": "A"}],
        })
        assert await store.delete(StoreQuery("assessment_questions").eq("id", "q1")) == 1
        assert store.tables["assessment_question_options"] == []

"""
Tests for the attempt policy and the session lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from learnhub.assessments.base.models import AssessmentTemplate, SessionStatus
from learnhub.assessments.engine.policy import DenialReason, decide
from learnhub.common.error_handling import (
    ActiveSessionExistsError,
    AttemptLimitError,
    DuplicateAnswerError,
    InvalidSessionStateError,
    QuestionNotFoundError,
    SessionExpiredError,
    SessionNotFoundError,
    TemplateNotFoundError,
    TemplateUnavailableError,
    ValidationError,
)
from learnhub.common.store.query import StoreQuery

from conftest import STUDENT_ID, TEMPLATE_ID, session_row


async def answer(engine, token, question_id, correct=True, **kwargs):
    option = f"{question_id}-o0" if correct else f"{question_id}-o1"
    return await engine.manager.submit_response(token, question_id, STUDENT_ID, selected_option_id=option, **kwargs)


class TestDecide:
    def template(self, **fields):
        return AssessmentTemplate(id="t", title="T", **fields)

    def test_allows_first_attempt(self):
        assert decide(self.template(), active_sessions=0, attempts_used=0).allowed

    def test_denies_inactive_or_private(self):
        assert decide(self.template(is_active=False), 0, 0).reason is DenialReason.TEMPLATE_UNAVAILABLE
        assert decide(self.template(is_public=False), 0, 0).reason is DenialReason.TEMPLATE_UNAVAILABLE

    def test_denies_when_in_progress(self):
        assert decide(self.template(), 1, 1).reason is DenialReason.ACTIVE_SESSION_EXISTS

    def test_denies_at_attempt_cap(self):
        assert decide(self.template(max_attempts=2), 0, 2).reason is DenialReason.ATTEMPT_LIMIT_REACHED
        assert decide(self.template(max_attempts=2), 0, 1).allowed


class TestStart:
    @pytest.mark.asyncio
    async def test_start_returns_sanitized_questions(self, engine):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)

        assert started["attempt_number"] == 1
        assert started["total_questions"] == 10
        assert started["expires_at"] == "2026-01-05T09:30:00+00:00"
        assert len(started["session_token"]) == 36
        for question in started["questions"]:
            assert "explanation" not in question
            assert all("is_correct" not in option for option in question["options"])

    @pytest.mark.asyncio
    async def test_second_start_while_active_is_rejected(self, engine):
        await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        with pytest.raises(ActiveSessionExistsError):
            await engine.manager.start(TEMPLATE_ID, STUDENT_ID)

    @pytest.mark.asyncio
    async def test_attempt_numbers_follow_history(self, make_engine):
        engine = make_engine(sessions=[session_row(1), session_row(2)])
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        assert started["attempt_number"] == 3

    @pytest.mark.asyncio
    async def test_attempt_cap(self, make_engine):
        engine = make_engine(template={"max_attempts": 2}, sessions=[session_row(1), session_row(2)])
        with pytest.raises(AttemptLimitError):
            await engine.manager.start(TEMPLATE_ID, STUDENT_ID)

    @pytest.mark.asyncio
    async def test_unavailable_and_unknown_templates(self, make_engine):
        engine = make_engine(template={"is_public": False})
        with pytest.raises(TemplateUnavailableError):
            await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        with pytest.raises(TemplateNotFoundError):
            await engine.manager.start("nope", STUDENT_ID)

    @pytest.mark.asyncio
    async def test_store_constraint_closes_start_race(self, engine):
        engine.manager.policy.ensure_can_start = AsyncMock()
        await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        with pytest.raises(ActiveSessionExistsError):
            await engine.manager.start(TEMPLATE_ID, STUDENT_ID)

    @pytest.mark.asyncio
    async def test_concurrent_starts_yield_one_session(self, engine):
        results = await asyncio.gather(
            engine.manager.start(TEMPLATE_ID, STUDENT_ID),
            engine.manager.start(TEMPLATE_ID, STUDENT_ID),
            return_exceptions=True,
        )
        assert sum(isinstance(r, dict) for r in results) == 1
        assert sum(isinstance(r, ActiveSessionExistsError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_lapsed_attempt_does_not_block_new_start(self, make_engine):
        stale = session_row(1, status="in_progress")
        engine = make_engine(sessions=[stale])
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        assert started["attempt_number"] == 2
        row = await engine.store.select_one(StoreQuery("student_assessment_sessions").eq("id", "sess-1"))
        assert row["status"] == "expired"

    @pytest.mark.asyncio
    async def test_question_shuffle_is_fixed_at_start(self, make_engine):
        engine = make_engine(template={"randomize_questions": True})
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        order = [q["id"] for q in started["questions"]]
        assert sorted(order) == sorted(f"q{i}" for i in range(1, 11))

        view = await engine.manager.session_view(started["session_token"], STUDENT_ID)
        assert view["question_order"] == order
        again = await engine.manager.session_view(started["session_token"], STUDENT_ID)
        assert again["question_order"] == order


class TestResponses:
    @pytest.mark.asyncio
    async def test_correct_and_incorrect_answers(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]

        right = await answer(engine, token, "q1", time_spent_seconds=12)
        assert right["is_correct"] is True
        assert right["points_earned"] == 1
        assert right["explanation"] == "Because q1"
        assert right["session_progress"]["questions_answered"] == 1

        wrong = await answer(engine, token, "q2", correct=False)
        assert (wrong["is_correct"], wrong["points_earned"]) == (False, 0)

    @pytest.mark.asyncio
    async def test_answer_in_the_other_field_scores_zero(self, engine):
        await engine.store.insert("assessment_questions", [{
            "id": "t1", "question_type": "text", "question_text": "Keyword for functions?",
            "points_value": 1, "is_active": True,
        }])
        await engine.store.insert("assessment_text_answers", [{"question_id": "t1", "correct_answer": "def"}])
        await engine.store.insert("assessment_template_questions", [
            {"template_id": TEMPLATE_ID, "question_id": "t1", "order_index": 10},
        ])
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        token = started["session_token"]

        text_as_option = await engine.manager.submit_response(token, "t1", STUDENT_ID, selected_option_id="def")
        option_as_text = await engine.manager.submit_response(token, "q1", STUDENT_ID, text_answer="q1-o0")
        assert (text_as_option["is_correct"], text_as_option["points_earned"]) == (False, 0)
        assert (option_as_text["is_correct"], option_as_text["points_earned"]) == (False, 0)

        stored = {r.question_id: r for r in await engine.sessions.list_responses(started["session_id"])}
        assert (stored["t1"].selected_option_id, stored["t1"].text_answer) == (None, None)
        assert (stored["q1"].selected_option_id, stored["q1"].text_answer) == (None, None)

    @pytest.mark.asyncio
    async def test_unknown_option_is_not_stored(self, engine):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        result = await engine.manager.submit_response(
            started["session_token"], "q1", STUDENT_ID, selected_option_id="q2-o0"
        )
        assert result["is_correct"] is False
        responses = await engine.sessions.list_responses(started["session_id"])
        assert responses[0].selected_option_id is None

    @pytest.mark.asyncio
    async def test_duplicate_submission_keeps_first(self, engine):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        token = started["session_token"]
        await answer(engine, token, "q1", correct=False)

        with pytest.raises(DuplicateAnswerError):
            await answer(engine, token, "q1", correct=True)

        responses = await engine.sessions.list_responses(started["session_id"])
        assert len(responses) == 1
        assert responses[0].selected_option_id == "q1-o1"
        assert responses[0].is_correct is False

    @pytest.mark.asyncio
    async def test_store_conflict_reported_as_duplicate(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        await answer(engine, token, "q1")
        engine.sessions.get_response = AsyncMock(return_value=None)
        with pytest.raises(DuplicateAnswerError):
            await answer(engine, token, "q1")

    @pytest.mark.asyncio
    async def test_answer_shape_is_validated(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        with pytest.raises(ValidationError):
            await engine.manager.submit_response(token, "q1", STUDENT_ID)
        with pytest.raises(ValidationError):
            await engine.manager.submit_response(
                token, "q1", STUDENT_ID, selected_option_id="q1-o0", text_answer="x"
            )
        with pytest.raises(ValidationError):
            await answer(engine, token, "q1", time_spent_seconds=-1)

    @pytest.mark.asyncio
    async def test_question_must_belong_to_session(self, make_engine):
        engine = make_engine(question_count=3)
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        with pytest.raises(QuestionNotFoundError):
            await answer(engine, token, "q9")

    @pytest.mark.asyncio
    async def test_unknown_token_or_other_student(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        with pytest.raises(SessionNotFoundError):
            await engine.manager.get_session("missing", STUDENT_ID)
        with pytest.raises(SessionNotFoundError):
            await engine.manager.get_session(token, "someone-else")


class TestQuestionDelivery:
    @pytest.mark.asyncio
    async def test_question_with_existing_response(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        await answer(engine, token, "q2")

        payload = await engine.manager.get_question(token, "q2", STUDENT_ID)
        assert payload["question_number"] == 2
        assert payload["existing_response"]["selected_option_id"] == "q2-o0"
        assert payload["session_info"] == {
            "time_remaining": 1800, "questions_answered": 1, "total_questions": 10,
        }

    @pytest.mark.asyncio
    async def test_randomized_options_never_expose_answer_key(self, make_engine):
        engine = make_engine(template={"randomize_options": True})
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]

        first = await engine.manager.get_question(token, "q1", STUDENT_ID)
        second = await engine.manager.get_question(token, "q1", STUDENT_ID)

        def key(payload):
            return sorted((o["id"], o["option_text"]) for o in payload["options"])

        assert key(first) == key(second)
        for payload in (first, second):
            assert all(set(o) == {"id", "option_text", "option_image_url"} for o in payload["options"])

        stored = await engine.store.select(StoreQuery("assessment_question_options").eq("question_id", "q1"))
        assert [r["order_index"] for r in stored] == [0, 1, 2, 3]


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_pause_and_resume_only_annotate(self, engine, clock):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        token = started["session_token"]

        clock.advance(minutes=5)
        paused = await engine.manager.pause(token, STUDENT_ID)
        assert paused["success"] is True
        assert paused["metadata"]["pause_count"] == 1

        clock.advance(minutes=1)
        resumed = await engine.manager.resume(token, STUDENT_ID)
        assert resumed["metadata"]["resumed_at"] == resumed["timestamp"]

        session = await engine.manager.get_session(token, STUDENT_ID)
        assert session.status is SessionStatus.IN_PROGRESS
        assert session.expires_at.isoformat() == started["expires_at"]
        assert session.time_remaining(clock()) == 24 * 60


class TestExpiry:
    @pytest.mark.asyncio
    async def test_read_after_expiry_expires_once(self, engine, clock):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        token = started["session_token"]
        clock.advance(minutes=31)

        transition = AsyncMock(side_effect=engine.sessions.transition)
        engine.sessions.transition = transition

        with pytest.raises(SessionExpiredError):
            await engine.manager.session_view(token, STUDENT_ID)
        with pytest.raises(SessionExpiredError):
            await engine.manager.get_session(token, STUDENT_ID)
        with pytest.raises(SessionExpiredError):
            await engine.manager.finish(token, STUDENT_ID)

        assert transition.await_count == 1
        row = await engine.store.select_one(StoreQuery("student_assessment_sessions").eq("id", started["session_id"]))
        assert row["status"] == "expired"

    @pytest.mark.asyncio
    async def test_submission_after_expiry_rejected(self, engine, clock):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        clock.advance(minutes=30, seconds=1)
        with pytest.raises(SessionExpiredError):
            await answer(engine, token, "q1")


class TestFinish:
    async def run(self, engine, correct_count):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        token = started["session_token"]
        for index in range(10):
            await answer(engine, token, f"q{index + 1}", correct=index < correct_count)
        return await engine.manager.finish(token, STUDENT_ID)

    @pytest.mark.asyncio
    async def test_seven_of_ten_passes(self, engine):
        summary = await self.run(engine, 7)
        assert summary["percentage_score"] == 70
        assert summary["passed"] is True
        assert summary["correct_answers"] == 7
        assert summary["total_score"] == 7

    @pytest.mark.asyncio
    async def test_six_of_ten_fails(self, engine):
        summary = await self.run(engine, 6)
        assert summary["percentage_score"] == 60
        assert summary["passed"] is False

    @pytest.mark.asyncio
    async def test_unanswered_questions_count_against(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        for index in range(5):
            await answer(engine, token, f"q{index + 1}")
        summary = await engine.manager.finish(token, STUDENT_ID)
        assert (summary["percentage_score"], summary["passed"]) == (50, False)

    @pytest.mark.asyncio
    async def test_finish_records_completion(self, engine, clock):
        started = await engine.manager.start(TEMPLATE_ID, STUDENT_ID)
        clock.advance(minutes=12)
        summary = await engine.manager.finish(started["session_token"], STUDENT_ID)

        assert summary["time_spent_seconds"] == 720
        assert summary["can_retake"] is True
        row = await engine.store.select_one(StoreQuery("student_assessment_sessions").eq("id", started["session_id"]))
        assert row["status"] == "completed"
        assert row["completed_at"] == "2026-01-05T09:12:00+00:00"

    @pytest.mark.asyncio
    async def test_finish_twice_rejected(self, engine):
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        await engine.manager.finish(token, STUDENT_ID)
        with pytest.raises(InvalidSessionStateError):
            await engine.manager.finish(token, STUDENT_ID)
        with pytest.raises(InvalidSessionStateError):
            await answer(engine, token, "q1")

    @pytest.mark.asyncio
    async def test_can_retake_respects_cap(self, make_engine):
        engine = make_engine(template={"max_attempts": 2}, sessions=[session_row(1)])
        token = (await engine.manager.start(TEMPLATE_ID, STUDENT_ID))["session_token"]
        summary = await engine.manager.finish(token, STUDENT_ID)
        assert summary["attempt_number"] == 2
        assert summary["can_retake"] is False


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_available_with_student_info(self, make_engine):
        engine = make_engine(
            template={"max_attempts": 3},
            sessions=[session_row(1, percentage_score=60, passed=False),
                      session_row(2, percentage_score=80, passed=True)],
        )
        available = await engine.manager.available_assessments(STUDENT_ID)
        assert len(available) == 1
        info = available[0]["student_info"]
        assert info["total_attempts"] == 2
        assert info["best_score"] == 80
        assert info["has_passed"] is True
        assert info["last_attempt_status"] == "completed"
        assert info["can_retake"] is True
        assert info["max_attempts_reached"] is False

    @pytest.mark.asyncio
    async def test_preview_breakdown(self, make_engine):
        engine = make_engine(question_count=6)
        preview = await engine.manager.preview(TEMPLATE_ID)
        breakdown = preview["question_breakdown"]
        assert breakdown["total"] == 6
        assert breakdown["by_difficulty"] == {"easy": 2, "medium": 2, "hard": 2}
        assert breakdown["by_type"]["mcq"] == 6
        assert breakdown["total_points"] == 6

    @pytest.mark.asyncio
    async def test_private_template_detail_forbidden(self, make_engine):
        engine = make_engine(template={"is_active": False})
        with pytest.raises(TemplateUnavailableError):
            await engine.manager.template_detail(TEMPLATE_ID)

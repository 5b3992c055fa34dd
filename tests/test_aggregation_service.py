from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from core.config import settings
from core.exceptions import AggregationFailure
from models.base import utcnow
from models.attempt import AttemptAggregation, AttemptStatus
from services.aggregation_service import AggregationService, ACCOUNT_STEP, ENGAGEMENT_STEP, retry_delay
from services.attempt_service import AttemptService
from services.profile_service import ProfileService
from services.engagement_service import EngagementService
from services.reconcile_service import run_reconciliation, release_lease
from services.stats_service import StatsService

USER_ID = 31


async def _completed_attempt(service, quiz, questions, answers):
    attempt = await service.begin_attempt(USER_ID, quiz.id)
    for question, answer in zip(questions, answers):
        await service.record_answer(attempt.id, USER_ID, question.id, answer, 5)
    return attempt


async def _outbox_row(db, attempt_id):
    result = await db.execute(
        select(AttemptAggregation)
        .filter(AttemptAggregation.attempt_id == attempt_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _after_backoff():
    return utcnow() + timedelta(seconds=settings.RECONCILE_BACKOFF_MAX_SECONDS + 60)


@pytest.mark.asyncio
async def test_account_failure_keeps_attempt_completed(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)

    with patch.object(ProfileService, "apply_attempt_result", AsyncMock(side_effect=RuntimeError("db gone"))):
        result = await service.finalize(attempt.id, USER_ID, 300)

    assert result.score == 80
    assert result.aggregation_pending is True

    stored = await service.get_attempt(attempt.id, USER_ID)
    assert stored.state is AttemptStatus.COMPLETED

    row = await _outbox_row(db_session, attempt.id)
    assert row.account_applied_at is None
    assert row.engagement_applied_at is not None
    assert row.retry_count == 1
    assert row.next_retry_at is not None
    assert "db gone" in row.last_error

    assert await StatsService(db_session).get_profile(USER_ID) is None

    # A retried finalize reports the stored result and still-pending aggregation
    replay = await service.finalize(attempt.id, USER_ID, 300)
    assert replay.already_completed is True
    assert replay.aggregation_pending is True


@pytest.mark.asyncio
async def test_reconciliation_applies_pending_step_once(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)

    with patch.object(ProfileService, "apply_attempt_result", AsyncMock(side_effect=RuntimeError("timeout"))):
        await service.finalize(attempt.id, USER_ID, 300)

    aggregation = AggregationService(db_session)
    assert await aggregation.pending_count() == 1

    # Still inside the backoff window
    assert await aggregation.reconcile_pending() == {"processed": 0, "failed": 0}

    later = _after_backoff()
    assert await aggregation.reconcile_pending(now=later) == {"processed": 1, "failed": 0}
    assert await aggregation.reconcile_pending(now=later) == {"processed": 0, "failed": 0}
    assert await aggregation.pending_count() == 0

    profile = await StatsService(db_session).get_profile(USER_ID)
    assert profile.points == 5
    assert profile.streak_count == 1

    metrics = await StatsService(db_session).get_engagement_metrics(USER_ID)
    assert metrics[0].quizzes_completed == 1


@pytest.mark.asyncio
async def test_process_is_a_noop_once_applied(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)
    await service.finalize(attempt.id, USER_ID, 300)

    applied = await AggregationService(db_session).process(attempt.id)
    assert applied == []

    profile = await StatsService(db_session).get_profile(USER_ID)
    assert profile.points == 5
    assert profile.quizzes_completed == 1


@pytest.mark.asyncio
async def test_both_steps_failing_count_as_one_retry_per_pass(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)

    failing = AsyncMock(side_effect=RuntimeError("down"))
    with patch.object(ProfileService, "apply_attempt_result", failing), \
            patch.object(EngagementService, "record_attempt", failing):
        await service.finalize(attempt.id, USER_ID, 300)
        with pytest.raises(AggregationFailure) as exc_info:
            await AggregationService(db_session).process(attempt.id)

    assert exc_info.value.failed_steps == [ACCOUNT_STEP, ENGAGEMENT_STEP]
    row = await _outbox_row(db_session, attempt.id)
    assert row.retry_count == 2
    assert "account: down" in row.last_error
    assert "engagement: down" in row.last_error


@pytest.mark.asyncio
async def test_long_outage_is_still_applied_after_recovery(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)
    aggregation = AggregationService(db_session)

    outage_passes = settings.RECONCILE_ALERT_AFTER_RETRIES + 5
    with patch.object(ProfileService, "apply_attempt_result", AsyncMock(side_effect=RuntimeError("outage"))):
        await service.finalize(attempt.id, USER_ID, 300)
        for _ in range(outage_passes):
            assert await aggregation.reconcile_pending(now=_after_backoff()) == {"processed": 0, "failed": 1}

    row = await _outbox_row(db_session, attempt.id)
    assert row.retry_count == outage_passes + 1

    assert await aggregation.reconcile_pending(now=_after_backoff()) == {"processed": 1, "failed": 0}
    profile = await StatsService(db_session).get_profile(USER_ID)
    assert profile.points == 5
    assert profile.quizzes_completed == 1
    assert await aggregation.pending_count() == 0


@pytest.mark.asyncio
async def test_retry_now_clears_backoff(db_session, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    service = AttemptService(db_session)
    attempt = await _completed_attempt(service, quiz, questions, sample_answers)

    with patch.object(EngagementService, "record_attempt", AsyncMock(side_effect=RuntimeError("x"))):
        await service.finalize(attempt.id, USER_ID, 300)

    aggregation = AggregationService(db_session)
    assert await aggregation.reconcile_pending() == {"processed": 0, "failed": 0}
    assert await aggregation.retry_now() == 1
    assert await aggregation.reconcile_pending() == {"processed": 1, "failed": 0}


def test_retry_delay_grows_and_caps():
    base = settings.RECONCILE_BACKOFF_BASE_SECONDS
    assert retry_delay(0) == timedelta(seconds=base)
    assert retry_delay(1) == timedelta(seconds=base * 2)
    assert retry_delay(10_000) == timedelta(seconds=settings.RECONCILE_BACKOFF_MAX_SECONDS)


@pytest.mark.asyncio
async def test_scheduled_job_skips_when_lease_is_held(session_factory):
    redis = AsyncMock()
    redis.set.return_value = None

    result = await run_reconciliation(redis, session_factory=session_factory)

    assert result is None
    redis.eval.assert_not_called()


@pytest.mark.asyncio
async def test_scheduled_job_reconciles_and_releases_own_lease(session_factory, quiz_factory, sample_answers):
    quiz, questions = await quiz_factory()
    async with session_factory() as db:
        service = AttemptService(db)
        attempt = await _completed_attempt(service, quiz, questions, sample_answers)
        with patch.object(EngagementService, "record_attempt", AsyncMock(side_effect=RuntimeError("x"))), \
                patch.object(settings, "RECONCILE_BACKOFF_BASE_SECONDS", 0):
            await service.finalize(attempt.id, USER_ID, 300)

    redis = AsyncMock()
    redis.set.return_value = True
    redis.eval.return_value = 1

    result = await run_reconciliation(redis, session_factory=session_factory)

    assert result == {"processed": 1, "failed": 0}
    token = redis.set.call_args.args[1]
    assert redis.set.call_args.kwargs == {"nx": True, "ex": settings.RECONCILE_LOCK_TTL_SECONDS}
    redis.eval.assert_awaited_once()
    assert redis.eval.call_args.args[1:] == (1, settings.RECONCILE_LOCK_KEY, token)
    redis.delete.assert_not_called()
    async with session_factory() as db:
        metrics = await StatsService(db).get_engagement_metrics(USER_ID)
        assert metrics[0].total_time_spent_seconds == 300


@pytest.mark.asyncio
async def test_expired_lease_is_left_to_its_new_holder():
    redis = AsyncMock()
    redis.eval.return_value = 0

    assert await release_lease(redis, "stale-token") is False
    redis.delete.assert_not_called()

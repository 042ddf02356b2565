"""
Card Testing Tracker Tests

Tests for attempt recording, session blocking and the operator actions,
against the in-memory store and (when available) Redis.
"""

import asyncio
from datetime import datetime, timedelta, UTC

import pytest

from riskguard.errors import AttemptValidationError
from riskguard.schemas import AttemptStatus, Decision, Resolution
from riskguard.tracking import CardTestingTrackerService, InMemoryTrackerStore, RedisTrackerStore

from conftest import FIXED_TIME

ORG = "org_test"
INVOICE = "inv_001"


class YieldingTrackerStore(InMemoryTrackerStore):
    """In-memory store that yields to the event loop between read and write."""

    async def _load(self, key):
        await asyncio.sleep(0)
        return await super()._load(key)


async def record_all(service, attempts, session_id=None, invoice_id=INVOICE):
    result = None
    for attempt in attempts:
        result = await service.record_attempt(ORG, invoice_id, attempt, session_id=session_id)
    return result


@pytest.mark.unit
class TestRecordAttempt:
    """Tests for record_attempt."""

    @pytest.mark.asyncio
    async def test_first_attempt_creates_tracker(self, tracker_service, make_attempt):
        result = await tracker_service.record_attempt(
            ORG, INVOICE, make_attempt("fp_1", AttemptStatus.SUCCEEDED)
        )

        assert result.total_attempts == 1
        assert result.unique_cards == 1
        assert result.suspicion_score == 0
        assert result.recommendation == Decision.ALLOW
        assert not result.blocked

    @pytest.mark.asyncio
    async def test_card_testing_burst_blocks(self, tracker_service, card_testing_burst):
        result = await record_all(tracker_service, card_testing_burst)

        assert result.suspicion_score == 100
        assert result.recommendation == Decision.BLOCK
        assert result.blocked
        assert result.unique_cards == 5

        tracker = await tracker_service.store.get(ORG, INVOICE)
        assert tracker.failed_attempts == 4
        assert tracker.successful_attempts == 1
        assert tracker.attempt_duration_seconds == 180
        assert tracker.primary_ip == "198.51.100.7"
        assert tracker.blocked_reason == "Suspicion score 100/100"

    @pytest.mark.asyncio
    async def test_unique_cards_matches_distinct_fingerprints(self, tracker_service, make_attempt):
        """Retrying the same card does not add a card."""
        attempts = [
            make_attempt("fp_1", AttemptStatus.FAILED, 0),
            make_attempt("fp_1", AttemptStatus.FAILED, 3600),
            make_attempt("fp_2", AttemptStatus.SUCCEEDED, 7200),
        ]

        result = await record_all(tracker_service, attempts)
        tracker = await tracker_service.store.get(ORG, INVOICE)

        assert result.unique_cards == 2
        assert tracker.unique_cards == len({a.card_fingerprint for a in tracker.attempts})
        assert tracker.version == 3

    @pytest.mark.asyncio
    async def test_accepts_dict_attempts(self, tracker_service):
        result = await tracker_service.record_attempt(
            ORG, INVOICE, {"card_fingerprint": "fp_1", "status": "failed", "amount": 1000}
        )

        assert result.total_attempts == 1

    @pytest.mark.asyncio
    async def test_mixed_naive_and_aware_timestamps(self, tracker_service):
        """Naive timestamps are read as UTC alongside aware ones."""
        for attempt in [
            {"card_fingerprint": "fp_1", "status": "failed", "timestamp": "2026-03-10T14:00:00"},
            {"card_fingerprint": "fp_2", "status": "failed"},
            {"card_fingerprint": "fp_3", "status": "failed", "timestamp": "2026-03-10T14:05:00Z"},
        ]:
            result = await tracker_service.record_attempt(ORG, INVOICE, attempt)

        tracker = await tracker_service.store.get(ORG, INVOICE)

        assert result.total_attempts == 3
        assert tracker.first_attempt_at == datetime(2026, 3, 10, 14, 0, tzinfo=UTC)
        assert all(a.timestamp.tzinfo is not None for a in tracker.attempts)

    @pytest.mark.parametrize(
        "attempt",
        [
            {"status": "failed"},
            {"card_fingerprint": "", "status": "failed"},
            {"card_fingerprint": "fp_1"},
            {"card_fingerprint": "fp_1", "status": "exploded"},
            {"card_fingerprint": "fp_1", "status": "failed", "amount": -5},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_attempt_rejected(self, tracker_service, attempt):
        with pytest.raises(AttemptValidationError):
            await tracker_service.record_attempt(ORG, INVOICE, attempt)

        assert await tracker_service.store.get(ORG, INVOICE) is None

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, tracker_service, card_testing_burst, make_attempt):
        """A burst on one checkout session does not leak into another."""
        await record_all(tracker_service, card_testing_burst, session_id="cs_attack")
        result = await tracker_service.record_attempt(
            ORG, INVOICE, make_attempt("fp_good", AttemptStatus.SUCCEEDED), session_id="cs_clean"
        )

        assert not result.blocked
        assert result.total_attempts == 1

    @pytest.mark.asyncio
    async def test_concurrent_attempts_are_all_kept(self, make_attempt):
        """20 concurrent writes on one key lose nothing."""
        service = CardTestingTrackerService(YieldingTrackerStore())
        attempts = [make_attempt(f"fp_{i}", AttemptStatus.FAILED, i) for i in range(20)]

        await asyncio.gather(*(
            service.record_attempt(ORG, INVOICE, a) for a in attempts
        ))
        tracker = await service.store.get(ORG, INVOICE)

        assert tracker.total_attempts == 20
        assert tracker.unique_cards == 20
        assert tracker.version == 20
        assert tracker.blocked

    @pytest.mark.asyncio
    async def test_key_locks_are_released(self, make_attempt):
        store = YieldingTrackerStore()
        service = CardTestingTrackerService(store)

        await asyncio.gather(*(
            service.record_attempt(ORG, f"inv_{i}", make_attempt("fp_1")) for i in range(10)
        ))

        assert len(store._locks) == 0
        assert len(await store.list_by_organization(ORG)) == 10


@pytest.mark.unit
class TestSessionReads:
    """Tests for block checks, summaries and velocity metrics."""

    @pytest.mark.asyncio
    async def test_should_block_unknown_session(self, tracker_service):
        status = await tracker_service.should_block_session(ORG, "inv_missing")

        assert not status.blocked
        assert status.reason is None

    @pytest.mark.asyncio
    async def test_should_block_after_burst(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        status = await tracker_service.should_block_session(ORG, INVOICE)

        assert status.blocked
        assert "5 distinct cards" in status.reason

    @pytest.mark.asyncio
    async def test_summary(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        summary = await tracker_service.get_session_summary(ORG, INVOICE)

        assert summary.unique_cards == 5
        assert summary.failed_attempts == 4
        assert summary.blocked
        assert not summary.resolved
        assert summary.first_attempt_at == FIXED_TIME

    @pytest.mark.asyncio
    async def test_summary_missing(self, tracker_service):
        assert await tracker_service.get_session_summary(ORG, "inv_missing") is None

    @pytest.mark.asyncio
    async def test_velocity_metrics(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        velocity = await tracker_service.calculate_velocity_metrics(
            ORG, INVOICE, now=FIXED_TIME + timedelta(minutes=10)
        )

        assert velocity.attempts_last_hour == 5
        assert velocity.attempts_last_day == 5
        assert velocity.unique_cards_used == 5
        assert velocity.unique_ips == 1
        assert velocity.rapid_attempts
        assert velocity.failure_rate == pytest.approx(0.8)
        assert velocity.suspicion_score == 100

    @pytest.mark.asyncio
    async def test_velocity_metrics_windows(self, tracker_service, make_attempt):
        attempts = [
            make_attempt("fp_1", AttemptStatus.SUCCEEDED, 0),
            make_attempt("fp_1", AttemptStatus.SUCCEEDED, 7200),
        ]
        await record_all(tracker_service, attempts)

        velocity = await tracker_service.calculate_velocity_metrics(
            ORG, INVOICE, now=FIXED_TIME + timedelta(hours=2, minutes=30)
        )

        assert velocity.attempts_last_hour == 1
        assert velocity.attempts_last_day == 2
        assert not velocity.rapid_attempts

    @pytest.mark.asyncio
    async def test_velocity_metrics_without_tracker(self, tracker_service):
        velocity = await tracker_service.calculate_velocity_metrics(ORG, "inv_missing")

        assert velocity.attempts_last_hour == 0
        assert velocity.unique_cards_used == 0

    @pytest.mark.asyncio
    async def test_analysis(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        analysis = await tracker_service.analyze_card_testing_pattern(ORG, INVOICE)

        assert analysis.is_card_testing
        assert analysis.should_block
        assert analysis.metrics.unique_cards == 5
        assert analysis.recommendation == Decision.BLOCK

    @pytest.mark.asyncio
    async def test_pre_check_does_not_record(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst[:4])

        check = await tracker_service.is_card_testing_attempt(ORG, INVOICE, card_testing_burst[4])
        tracker = await tracker_service.store.get(ORG, INVOICE)

        assert check.is_likely_card_testing
        assert tracker.total_attempts == 4


@pytest.mark.unit
class TestOperatorActions:
    """Tests for block, unblock and resolve."""

    @pytest.mark.asyncio
    async def test_unblock_resets_score_and_keeps_history(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        tracker = await tracker_service.unblock_and_reset(ORG, INVOICE, actor="ops@example.com")

        assert not tracker.blocked
        assert tracker.suspicion_score == 0
        assert tracker.recommendation == Decision.ALLOW
        assert tracker.unblocked_by == "ops@example.com"
        assert tracker.total_attempts == 5
        assert not (await tracker_service.should_block_session(ORG, INVOICE)).blocked

    @pytest.mark.asyncio
    async def test_next_attempt_after_unblock_reblocks(self, tracker_service, card_testing_burst, make_attempt):
        """The full history is rescored on the next attempt."""
        await record_all(tracker_service, card_testing_burst)
        await tracker_service.unblock_and_reset(ORG, INVOICE, actor="ops@example.com")

        result = await tracker_service.record_attempt(
            ORG, INVOICE, make_attempt("fp_6", AttemptStatus.FAILED, 200)
        )

        assert result.blocked
        assert result.suspicion_score == 100

    @pytest.mark.asyncio
    async def test_unblock_missing(self, tracker_service):
        assert await tracker_service.unblock_and_reset(ORG, "inv_missing", actor="ops") is None

    @pytest.mark.asyncio
    async def test_manual_block(self, tracker_service, make_attempt):
        await tracker_service.record_attempt(ORG, INVOICE, make_attempt("fp_1", AttemptStatus.SUCCEEDED))

        tracker = await tracker_service.block_for_card_testing(ORG, INVOICE, reason="chargeback report")

        assert tracker.blocked
        assert tracker.blocked_reason == "chargeback report"
        assert tracker.recommendation == Decision.BLOCK
        assert tracker.action_type == "block"

    @pytest.mark.asyncio
    async def test_blocked_flag_is_sticky(self, tracker_service, make_attempt):
        """A clean attempt after a manual block does not clear it."""
        await tracker_service.record_attempt(ORG, INVOICE, make_attempt("fp_1", AttemptStatus.SUCCEEDED))
        await tracker_service.block_for_card_testing(ORG, INVOICE, reason="manual")

        result = await tracker_service.record_attempt(
            ORG, INVOICE, make_attempt("fp_1", AttemptStatus.SUCCEEDED, 7200)
        )

        assert result.blocked

    @pytest.mark.asyncio
    async def test_resolve(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        tracker = await tracker_service.resolve_card_testing(
            ORG, INVOICE, "allowed", resolved_by="ops@example.com"
        )

        assert tracker.resolved
        assert tracker.resolution == Resolution.ALLOWED
        assert await tracker_service.list_active_trackers(ORG) == []


@pytest.mark.unit
class TestListings:
    """Tests for organization-wide listings and stats."""

    @pytest.mark.asyncio
    async def test_list_active_ordered_by_suspicion(self, tracker_service, card_testing_burst, make_attempt):
        await record_all(tracker_service, [make_attempt("fp_1", AttemptStatus.SUCCEEDED)], invoice_id="inv_clean")
        await record_all(tracker_service, card_testing_burst, invoice_id="inv_attack")

        active = await tracker_service.list_active_trackers(ORG)

        assert [t.invoice_id for t in active] == ["inv_attack", "inv_clean"]
        assert len(await tracker_service.list_active_trackers(ORG, limit=1)) == 1

    @pytest.mark.asyncio
    async def test_stats(self, tracker_service, card_testing_burst, make_attempt):
        await record_all(tracker_service, card_testing_burst, invoice_id="inv_attack")
        await record_all(
            tracker_service,
            [make_attempt("fp_1", AttemptStatus.FAILED, 0), make_attempt("fp_2", AttemptStatus.FAILED, 30)],
            invoice_id="inv_probe",
        )
        await record_all(tracker_service, [make_attempt("fp_1", AttemptStatus.SUCCEEDED)], invoice_id="inv_clean")

        stats = await tracker_service.get_card_testing_stats(ORG)

        assert stats.total_sessions == 3
        assert stats.total_blocked == 1
        assert stats.total_suspicious == 1
        assert stats.last_24h_blocked == 1

    @pytest.mark.asyncio
    async def test_organizations_are_isolated(self, tracker_service, card_testing_burst):
        await record_all(tracker_service, card_testing_burst)

        assert await tracker_service.list_active_trackers("org_other") == []


@pytest.mark.integration
class TestRedisTrackerStore:
    """Tests against a live Redis."""

    @pytest.fixture
    def redis_tracker(self, redis_client, detector):
        store = RedisTrackerStore(redis_client, key_prefix="riskguard-test:", ttl_seconds=60)
        return CardTestingTrackerService(store, detector=detector, rapid_attempt_seconds=60)

    @pytest.mark.asyncio
    async def test_burst_round_trip(self, redis_tracker, card_testing_burst):
        result = await record_all(redis_tracker, card_testing_burst)
        summary = await redis_tracker.get_session_summary(ORG, INVOICE)

        assert result.blocked
        assert summary.unique_cards == 5
        assert summary.blocked

    @pytest.mark.asyncio
    async def test_concurrent_writes_are_serialized(self, redis_client, detector, make_attempt):
        store = RedisTrackerStore(redis_client, key_prefix="riskguard-test:", ttl_seconds=60, max_retries=50)
        service = CardTestingTrackerService(store, detector=detector)
        attempts = [make_attempt(f"fp_{i}", AttemptStatus.FAILED, i) for i in range(10)]

        await asyncio.gather(*(service.record_attempt(ORG, "inv_race", a) for a in attempts))
        tracker = await store.get(ORG, "inv_race")

        assert tracker.total_attempts == 10
        assert tracker.unique_cards == 10

    @pytest.mark.asyncio
    async def test_list_by_organization(self, redis_tracker, make_attempt):
        await record_all(redis_tracker, [make_attempt("fp_1")], invoice_id="inv_a")
        await record_all(redis_tracker, [make_attempt("fp_2")], invoice_id="inv_b")

        trackers = await redis_tracker.store.list_by_organization(ORG)

        assert {t.invoice_id for t in trackers} == {"inv_a", "inv_b"}

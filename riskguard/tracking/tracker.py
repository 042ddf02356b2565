"""
Card Testing Tracker

Records every payment attempt made against an invoice (optionally one
checkout session) and keeps the tracker's derived state in step with
its full attempt history. This is the only stateful scoring component.

Each operation is one atomic read-modify-write through the store, so
concurrent attempts on the same invoice never overwrite each other.
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from pydantic import ValidationError

from ..config import settings
from ..detection import CardTestingDetector
from ..errors import AttemptValidationError
from ..metrics import metrics
from ..schemas import (
    AttemptStatus,
    CardTestingAnalysis,
    CardTestingAttempt,
    CardTestingCheck,
    CardTestingStats,
    CardTestingTracker,
    Decision,
    Resolution,
    SessionBlockStatus,
    SessionSummary,
    TrackAttemptResult,
    VelocityMetrics,
)
from .store import TrackerStore

logger = logging.getLogger("riskguard.tracking")

SUSPICIOUS_SCORE = 40


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _aware(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def recompute_tracker(tracker: CardTestingTracker, detector: CardTestingDetector) -> CardTestingTracker:
    """
    Refresh every derived field from the complete attempt list.

    Mutates and returns the tracker. The blocked flag only ever turns
    on here; clearing it is an explicit administrative action.
    """
    attempts = tracker.attempts
    ordered = sorted(attempts, key=lambda a: a.timestamp)

    tracker.unique_cards = len({a.card_fingerprint for a in attempts})
    tracker.total_attempts = len(attempts)
    tracker.successful_attempts = sum(1 for a in attempts if a.status == AttemptStatus.SUCCEEDED)
    tracker.failed_attempts = sum(1 for a in attempts if a.status == AttemptStatus.FAILED)
    tracker.blocked_attempts = sum(1 for a in attempts if a.status == AttemptStatus.BLOCKED)

    ips = [a.ip_address for a in attempts if a.ip_address]
    tracker.unique_ips = len(set(ips))
    tracker.primary_ip = max(set(ips), key=ips.count) if ips else None

    if ordered:
        tracker.first_attempt_at = ordered[0].timestamp
        tracker.last_attempt_at = ordered[-1].timestamp
        tracker.attempt_duration_seconds = int(
            (ordered[-1].timestamp - ordered[0].timestamp).total_seconds()
        )

    score, reasons = detector.calculate_suspicion(attempts)
    tracker.suspicion_score = score
    tracker.suspicion_reasons = reasons
    tracker.recommendation = detector.recommend(score)

    if score >= detector.thresholds.block_score and not tracker.blocked:
        tracker.blocked = True
        tracker.blocked_at = _utc_now()
        tracker.blocked_reason = f"Suspicion score {score}/100"

    tracker.updated_at = _utc_now()
    return tracker


class CardTestingTrackerService:
    """
    Card testing tracker operations.

    Provides:
    - Attempt recording with full recomputation
    - Session block checks and summaries
    - Velocity metrics for the fraud engine
    - Operator actions (block, resolve, unblock and reset)
    - Organization-wide listings and stats
    """

    def __init__(
        self,
        store: TrackerStore,
        detector: Optional[CardTestingDetector] = None,
        rapid_attempt_seconds: Optional[int] = None,
    ):
        """
        Initialize tracker service.

        Args:
            store: Tracker storage backend
            detector: Suspicion scorer (default thresholds from settings)
            rapid_attempt_seconds: Gap below which two attempts are rapid
        """
        self.store = store
        self.detector = detector or CardTestingDetector()
        self.rapid_attempt_seconds = rapid_attempt_seconds or settings.rapid_attempt_seconds

    # =========================================================================
    # Recording
    # =========================================================================

    async def record_attempt(
        self,
        organization_id: str,
        invoice_id: str,
        attempt: CardTestingAttempt | dict,
        session_id: Optional[str] = None,
    ) -> TrackAttemptResult:
        """
        Append an attempt and recompute the tracker.

        Args:
            organization_id: Owning organization
            invoice_id: Invoice or order the attempt belongs to
            attempt: Attempt (card fingerprint and status are required)
            session_id: Optional checkout session scope

        Returns:
            TrackAttemptResult with the new score and recommendation

        Raises:
            AttemptValidationError: fingerprint or status missing/invalid
            TrackerStorageError: storage unavailable or write contention
        """
        attempt = self._validate_attempt(attempt)

        was_blocked = False

        def append(current: Optional[CardTestingTracker]) -> CardTestingTracker:
            nonlocal was_blocked
            was_blocked = bool(current and current.blocked)
            tracker = current or CardTestingTracker(
                organization_id=organization_id,
                invoice_id=invoice_id,
                session_id=session_id,
            )
            tracker.attempts.append(attempt)
            return recompute_tracker(tracker, self.detector)

        tracker = await self.store.update(organization_id, invoice_id, session_id, append)

        metrics.tracker_attempts.labels(status=attempt.status.value).inc()
        metrics.suspicion_score_distribution.observe(tracker.suspicion_score)

        if tracker.blocked and not was_blocked:
            metrics.sessions_blocked.inc()
            logger.warning(
                "Session blocked for card testing org=%s invoice=%s cards=%d score=%d",
                organization_id, invoice_id, tracker.unique_cards, tracker.suspicion_score,
            )

        return TrackAttemptResult(
            tracker_id=tracker.id,
            suspicion_score=tracker.suspicion_score,
            reasons=tracker.suspicion_reasons,
            recommendation=tracker.recommendation,
            blocked=tracker.blocked,
            unique_cards=tracker.unique_cards,
            total_attempts=tracker.total_attempts,
        )

    @staticmethod
    def _validate_attempt(attempt: CardTestingAttempt | dict) -> CardTestingAttempt:
        if isinstance(attempt, CardTestingAttempt):
            return attempt
        if not attempt.get("card_fingerprint"):
            raise AttemptValidationError("Attempt is missing a card fingerprint")
        if not attempt.get("status"):
            raise AttemptValidationError("Attempt is missing a status")
        try:
            return CardTestingAttempt.model_validate(attempt)
        except ValidationError as e:
            raise AttemptValidationError(f"Invalid attempt: {e}") from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def should_block_session(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str] = None,
    ) -> SessionBlockStatus:
        """Blocked if the stored flag is set or the stored score is critical."""
        tracker = await self.store.get(organization_id, invoice_id, session_id)
        if tracker is None:
            return SessionBlockStatus(blocked=False)

        if tracker.blocked:
            return SessionBlockStatus(
                blocked=True,
                reason=f"Session blocked: {tracker.unique_cards} distinct cards detected",
            )

        if tracker.suspicion_score >= self.detector.thresholds.block_score:
            return SessionBlockStatus(
                blocked=True,
                reason=f"Critical suspicion score: {tracker.suspicion_score}/100",
            )

        return SessionBlockStatus(blocked=False)

    async def get_session_summary(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str] = None,
    ) -> Optional[SessionSummary]:
        """Read-only projection, or None when no tracker exists."""
        tracker = await self.store.get(organization_id, invoice_id, session_id)
        if tracker is None:
            return None
        return SessionSummary(
            tracker_id=tracker.id,
            unique_cards=tracker.unique_cards,
            total_attempts=tracker.total_attempts,
            failed_attempts=tracker.failed_attempts,
            suspicion_score=tracker.suspicion_score,
            recommendation=tracker.recommendation,
            reasons=tracker.suspicion_reasons,
            blocked=tracker.blocked,
            resolved=tracker.resolved,
            first_attempt_at=tracker.first_attempt_at,
            last_attempt_at=tracker.last_attempt_at,
        )

    async def calculate_velocity_metrics(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VelocityMetrics:
        """
        Velocity view of a session for the fraud engine.

        Returns zeroed metrics when the session has no attempts.
        """
        tracker = await self.store.get(organization_id, invoice_id, session_id)
        if tracker is None or not tracker.attempts:
            return VelocityMetrics()

        now = _aware(now or _utc_now())
        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(days=1)
        attempts = tracker.attempts
        stamps = sorted(a.timestamp for a in attempts)

        rapid = any(
            (later - earlier).total_seconds() < self.rapid_attempt_seconds
            for earlier, later in zip(stamps, stamps[1:])
        )
        failed = sum(1 for a in attempts if a.status == AttemptStatus.FAILED)

        return VelocityMetrics(
            attempts_last_hour=sum(1 for ts in stamps if ts > hour_ago),
            attempts_last_day=sum(1 for ts in stamps if ts > day_ago),
            unique_cards_used=len({a.card_fingerprint for a in attempts}),
            unique_ips=len({a.ip_address for a in attempts if a.ip_address}),
            rapid_attempts=rapid,
            failure_rate=failed / len(attempts),
            failed_attempts=failed,
            suspicion_score=tracker.suspicion_score,
        )

    async def analyze_card_testing_pattern(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str] = None,
    ) -> CardTestingAnalysis:
        """Full analysis of a stored session; empty analysis when absent."""
        tracker = await self.store.get(organization_id, invoice_id, session_id)
        if tracker is None or not tracker.attempts:
            return CardTestingAnalysis()

        score = tracker.suspicion_score
        return CardTestingAnalysis(
            suspicion_score=score,
            is_card_testing=score >= self.detector.thresholds.review_score,
            should_block=tracker.blocked or score >= self.detector.thresholds.block_score,
            reasons=tracker.suspicion_reasons,
            metrics=self.detector.calculate_metrics(tracker.attempts),
            recommendation=self.detector.recommend(score),
        )

    async def is_card_testing_attempt(
        self,
        organization_id: str,
        invoice_id: str,
        candidate: CardTestingAttempt,
        session_id: Optional[str] = None,
    ) -> CardTestingCheck:
        """Pre-check a candidate against the stored history without recording it."""
        tracker = await self.store.get(organization_id, invoice_id, session_id)
        history = tracker.attempts if tracker else []
        return self.detector.check_attempt(history, candidate)

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def block_for_card_testing(
        self,
        organization_id: str,
        invoice_id: str,
        reason: str,
        session_id: Optional[str] = None,
    ) -> Optional[CardTestingTracker]:
        """Manually block a session. No-op when no tracker exists."""
        def block(current: Optional[CardTestingTracker]) -> Optional[CardTestingTracker]:
            if current is None:
                return None
            now = _utc_now()
            current.blocked = True
            current.blocked_at = now
            current.blocked_reason = reason
            current.recommendation = Decision.BLOCK
            current.action_taken = True
            current.action_type = "block"
            current.updated_at = now
            return current

        tracker = await self.store.update(organization_id, invoice_id, session_id, block)
        if tracker is not None:
            metrics.sessions_blocked.inc()
            logger.warning("Session manually blocked org=%s invoice=%s: %s", organization_id, invoice_id, reason)
        return tracker

    async def resolve_card_testing(
        self,
        organization_id: str,
        invoice_id: str,
        resolution: Resolution | str,
        resolved_by: str,
        session_id: Optional[str] = None,
    ) -> Optional[CardTestingTracker]:
        """Close a tracker as allowed, blocked or expired."""
        resolution = Resolution(resolution)

        def resolve(current: Optional[CardTestingTracker]) -> Optional[CardTestingTracker]:
            if current is None:
                return None
            now = _utc_now()
            current.resolved = True
            current.resolved_at = now
            current.resolved_by = resolved_by
            current.resolution = resolution
            current.updated_at = now
            return current

        tracker = await self.store.update(organization_id, invoice_id, session_id, resolve)
        if tracker is not None:
            logger.info(
                "Tracker resolved org=%s invoice=%s resolution=%s by=%s",
                organization_id, invoice_id, resolution.value, resolved_by,
            )
        return tracker

    async def unblock_and_reset(
        self,
        organization_id: str,
        invoice_id: str,
        actor: str,
        session_id: Optional[str] = None,
    ) -> Optional[CardTestingTracker]:
        """
        Clear the blocked flag, keeping the full attempt history.

        The score and recommendation are reset to 0 and ALLOW; the next
        recorded attempt recomputes both from the complete history.
        """
        def unblock(current: Optional[CardTestingTracker]) -> Optional[CardTestingTracker]:
            if current is None:
                return None
            now = _utc_now()
            current.blocked = False
            current.blocked_at = None
            current.blocked_reason = None
            current.suspicion_score = 0
            current.suspicion_reasons = []
            current.recommendation = Decision.ALLOW
            current.action_taken = True
            current.action_type = "unblock"
            current.unblocked_by = actor
            current.unblocked_at = now
            current.updated_at = now
            return current

        tracker = await self.store.update(organization_id, invoice_id, session_id, unblock)
        if tracker is not None:
            logger.info("Session unblocked org=%s invoice=%s by=%s", organization_id, invoice_id, actor)
        return tracker

    # =========================================================================
    # Listings
    # =========================================================================

    async def list_active_trackers(
        self,
        organization_id: str,
        limit: int = 10,
    ) -> list[CardTestingTracker]:
        """Unresolved trackers, highest suspicion first."""
        trackers = await self.store.list_by_organization(organization_id)
        active = [t for t in trackers if not t.resolved]
        active.sort(key=lambda t: (t.suspicion_score, _aware(t.created_at)), reverse=True)
        return active[:limit]

    async def get_card_testing_stats(
        self,
        organization_id: str,
        now: Optional[datetime] = None,
    ) -> CardTestingStats:
        """Organization-wide counts for dashboards."""
        trackers = await self.store.list_by_organization(organization_id)
        day_ago = _aware(now or _utc_now()) - timedelta(hours=24)

        return CardTestingStats(
            total_blocked=sum(1 for t in trackers if t.blocked),
            total_suspicious=sum(1 for t in trackers if t.suspicion_score >= SUSPICIOUS_SCORE),
            total_sessions=len(trackers),
            last_24h_blocked=sum(
                1 for t in trackers
                if t.blocked and t.blocked_at and _aware(t.blocked_at) > day_ago
            ),
        )

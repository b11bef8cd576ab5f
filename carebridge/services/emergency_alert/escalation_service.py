"""Escalation Protocol Engine.

Escalation is a ladder separate from alert status:
    level-1 < level-2 < level-3 < critical

Each level pages a fixed roster and carries a timeout. An escalation that
is not completed within its timeout is failed and replaced by a new one
at the next level (critical stays critical). The timeout sweep is split
into a pure planner, plan_escalation_timeouts(), and the applier,
EscalationProtocolService.check_escalation_timeouts(); the hosting
environment owns the schedule.

Escalation lifecycle:
    active -> in-progress -> completed
    active / in-progress -> failed (reason required)
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from carebridge.shared.models import Episode, UrgencyLevel, format_timestamp, minutes_between, utc_now
from carebridge.shared.utils import hash_pii
from .config import (
    DEFAULT_ESCALATION_LADDER,
    DEFAULT_MAX_WAIT_MINUTES,
    ESCALATION_LADDERS,
    ESCALATION_SUPERVISORS,
    ESCALATION_TIMEOUT_MINUTES,
    MAX_WAIT_MINUTES,
    EmergencyConfig,
)
from .episode_store import EpisodeFlag, EpisodeStore, RecordKind
from .errors import InvalidTransitionError, NotFoundError, ValidationError, episode_not_found
from .models import (
    EscalationAssessment,
    EscalationLevel,
    EscalationProtocol,
    EscalationResult,
    EscalationStatus,
    EscalationStep,
    TimeoutSweepResult,
)

logger = logging.getLogger(__name__)

TIMEOUT_FAILURE_REASON = "Escalation timeout exceeded"


def effective_timeout(level: EscalationLevel, urgent: bool = False) -> int:
    """Timeout in minutes for a level; urgent escalations get half."""
    base = ESCALATION_TIMEOUT_MINUTES[level]
    return max(1, base // 2) if urgent else base


def build_escalation_path(
    urgency: Optional[UrgencyLevel],
    level: EscalationLevel,
) -> List[EscalationStep]:
    """Pools this escalation would traverse, from its own level upward."""
    ladder = ESCALATION_LADDERS.get(urgency, DEFAULT_ESCALATION_LADDER)
    levels = ladder[ladder.index(level):] if level in ladder else (level,)
    return [EscalationStep(level=step, supervisors=list(ESCALATION_SUPERVISORS[step])) for step in levels]


def max_wait_minutes(urgency: Optional[UrgencyLevel]) -> int:
    return MAX_WAIT_MINUTES.get(urgency, DEFAULT_MAX_WAIT_MINUTES)


@dataclass(frozen=True)
class TimeoutPlan:
    """What a sweep should do at a given instant."""
    timed_out: List[Tuple[EscalationProtocol, EscalationLevel]] = field(default_factory=list)
    warnings: List[Tuple[EscalationProtocol, int]] = field(default_factory=list)


def plan_escalation_timeouts(
    now: datetime,
    escalations: Iterable[EscalationProtocol],
    warning_minutes: int = 2,
) -> TimeoutPlan:
    """Decide which open escalations time out and which need a warning.

    Pure function: no storage, no clock, no notifications.

    Args:
        now: Sweep instant
        escalations: Candidate escalations (closed ones are ignored)
        warning_minutes: Warn when this many minutes or fewer remain

    Returns:
        TimeoutPlan pairing each timed-out escalation with its next level,
        and each escalation due a warning with its whole minutes remaining
    """
    plan = TimeoutPlan()
    for escalation in escalations:
        if not escalation.status.is_open:
            continue
        elapsed = escalation.elapsed_minutes(now)
        if elapsed > escalation.timeout_minutes:
            plan.timed_out.append((escalation, escalation.escalation_level.next()))
            continue
        remaining = math.ceil(escalation.timeout_minutes - elapsed)
        if remaining <= warning_minutes and escalation.timeout_warning_sent_at is None:
            plan.warnings.append((escalation, remaining))
    return plan


class EscalationProtocolService:
    """Owns the escalation lifecycle and the timeout sweep."""

    def __init__(
        self,
        store: EpisodeStore,
        notifier: Any = None,
        config: Optional[EmergencyConfig] = None,
        clock: Callable = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        """Initialize escalation service.

        Args:
            store: Episode store adapter
            notifier: Notification dispatcher used by the timeout sweep
            config: Thresholds
            clock: Returns the current aware UTC datetime
            id_factory: Produces new escalation ids
        """
        self.store = store
        self.notifier = notifier
        self.config = config or EmergencyConfig()
        self.clock = clock
        self.id_factory = id_factory

    def has_critical_symptoms(self, episode: Episode) -> bool:
        """Critical keyword in the complaint or associated symptoms, or high severity."""
        if episode.symptoms.severity >= self.config.critical_severity_threshold:
            return True
        texts = [episode.symptoms.primary_complaint, *episode.symptoms.associated_symptoms]
        lowered = " ".join(text.lower() for text in texts if text)
        return any(keyword in lowered for keyword in self.config.critical_keywords)

    def assess_escalation_need(
        self,
        episode: Episode,
        now: Optional[datetime] = None,
    ) -> EscalationAssessment:
        """Advise whether an episode should be escalated. Read-only."""
        now = now or self.clock()

        def assessment(required, reason, level, urgent):
            return EscalationAssessment(
                required=required,
                reason=reason,
                target_level=level,
                urgent_response=urgent,
                timeout_minutes=effective_timeout(level, urgent),
            )

        if episode.triage is None or episode.urgency_level is None:
            return assessment(False, "No triage assessment available", EscalationLevel.LEVEL_1, False)

        urgency = episode.urgency_level
        wait = minutes_between(episode.created_at, now) if episode.created_at else 0
        max_wait = max_wait_minutes(urgency)

        if urgency == UrgencyLevel.EMERGENCY:
            if self.has_critical_symptoms(episode):
                return assessment(
                    True, "Critical symptoms require immediate escalation",
                    EscalationLevel.CRITICAL, True,
                )
            if wait > max_wait:
                return assessment(
                    True, f"Emergency wait time {wait} min exceeds {max_wait} min",
                    EscalationLevel.LEVEL_2, True,
                )
            confidence = episode.triage.ai_assessment.confidence
            if (
                episode.triage.ai_assessment.used
                and confidence is not None
                and confidence < self.config.ai_confidence_threshold
            ):
                return assessment(
                    True, "Low AI triage confidence requires supervisor review",
                    EscalationLevel.LEVEL_1, False,
                )
        elif urgency == UrgencyLevel.URGENT and wait > max_wait:
            return assessment(
                True, f"Urgent wait time {wait} min exceeds {max_wait} min",
                EscalationLevel.LEVEL_1, False,
            )

        return assessment(False, "No escalation criteria met", EscalationLevel.LEVEL_1, False)

    def _create_escalation(
        self,
        episode: Episode,
        level: EscalationLevel,
        reason: str,
        urgent_response: bool,
        target_level: Optional[EscalationLevel] = None,
        previous_escalation_id: Optional[str] = None,
    ) -> EscalationProtocol:
        now = self.clock()
        escalation = EscalationProtocol(
            escalation_id=self.id_factory(),
            episode_id=episode.episode_id,
            escalation_level=level,
            reason=reason,
            created_at=now,
            status=EscalationStatus.ACTIVE,
            assigned_supervisors=list(ESCALATION_SUPERVISORS[level]),
            escalation_path=build_escalation_path(episode.urgency_level, level),
            timeout_minutes=effective_timeout(level, urgent_response),
            urgent_response=urgent_response,
            target_level=target_level,
            previous_escalation_id=previous_escalation_id,
        )

        # The snapshot level never moves backwards
        current = EscalationLevel.parse(episode.escalation_level)
        snapshot_level = level if current is None or level.rank >= current.rank else current

        flag = EpisodeFlag.ESCALATION
        self.store.append_escalation(
            episode.episode_id,
            escalation,
            snapshot={
                flag.attribute: flag.active_value,
                flag.flagged_at_attribute: format_timestamp(now),
                "escalationLevel": snapshot_level.value,
                "lastEscalation": escalation.to_item(),
                "assignedEscalationSupervisors": list(escalation.assigned_supervisors),
            },
        )

        logger.critical(
            "ESCALATION_CREATED",
            extra={
                "escalation_id": escalation.escalation_id,
                "episode_id": episode.episode_id,
                "patient_id_hash": hash_pii(episode.patient_id),
                "escalation_level": level.value,
                "urgent_response": urgent_response,
                "timeout_minutes": escalation.timeout_minutes,
                "previous_escalation_id": previous_escalation_id,
            }
        )
        return escalation

    def process_escalation(
        self,
        episode_id: str,
        escalation_reason: str,
        target_level: Any = None,
        urgent_response: bool = False,
    ) -> EscalationResult:
        """Escalate an episode.

        Args:
            episode_id: Episode to escalate
            escalation_reason: Human-readable justification
            target_level: Explicit level; ignored when missing or invalid
            urgent_response: Halve the timeout

        Returns:
            EscalationResult with the new record and its supervisors

        Raises:
            NotFoundError: If the episode does not exist
        """
        episode = self.store.get_episode(episode_id)
        if episode is None:
            raise episode_not_found(episode_id)

        requested = EscalationLevel.parse(target_level)
        current = EscalationLevel.parse(episode.escalation_level)
        level = requested or (current.next() if current else EscalationLevel.LEVEL_1)

        escalation = self._create_escalation(
            episode, level, escalation_reason, bool(urgent_response), target_level=requested,
        )

        return EscalationResult(
            escalation_id=escalation.escalation_id,
            episode=episode,
            escalation=escalation,
            target_level=level,
            assigned_supervisors=list(escalation.assigned_supervisors),
            expected_response_time=escalation.timeout_minutes,
        )

    def get_active_escalations(self, episode_id: str) -> List[EscalationProtocol]:
        """Open (active or in-progress) escalations for an episode."""
        return [
            EscalationProtocol.from_item(item)
            for item in self.store.query_active_records_for_episode(episode_id, RecordKind.ESCALATION)
        ]

    def update_escalation_status(
        self,
        escalation_id: str,
        status: Any,
        failure_reason: Optional[str] = None,
        episode_id: Optional[str] = None,
    ) -> EscalationProtocol:
        """Move an escalation through its lifecycle.

        Args:
            escalation_id: Escalation to update
            status: Target status
            failure_reason: Required when the target is failed
            episode_id: Owning episode; needed when the record is embedded

        Raises:
            NotFoundError: If the escalation cannot be found
            ValidationError: Unknown status or missing failure reason
            InvalidTransitionError: Transition not allowed
        """
        try:
            target = EscalationStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid escalation status: {status}")

        item = self.store.get_record(RecordKind.ESCALATION, escalation_id, episode_id)
        if item is None:
            raise NotFoundError(f"Escalation {escalation_id} not found")
        escalation = EscalationProtocol.from_item(item)

        if not escalation.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Escalation {escalation_id} cannot move from "
                f"{escalation.status.value} to {target.value}"
            )
        if target == EscalationStatus.FAILED and not failure_reason:
            raise ValidationError(
                "Missing required field: failureReason", missing_fields=["failureReason"],
            )

        now = self.clock()
        escalation.status = target
        escalation.updated_at = now
        fields: Dict[str, Any] = {"status": target.value, "updatedAt": format_timestamp(now)}
        if target == EscalationStatus.COMPLETED:
            escalation.completed_at = now
            fields["completedAt"] = format_timestamp(now)
        elif target == EscalationStatus.FAILED:
            escalation.failure_reason = failure_reason
            fields["failureReason"] = failure_reason

        snapshot = None
        if not target.is_open:
            others = [
                other for other in self.get_active_escalations(escalation.episode_id)
                if other.escalation_id != escalation_id
            ]
            if not others:
                snapshot = {EpisodeFlag.ESCALATION.attribute: target.value}

        self.store.update_record(
            RecordKind.ESCALATION, escalation_id, escalation.episode_id, fields, snapshot,
        )

        logger.info(
            "ESCALATION_STATUS_UPDATED",
            extra={
                "escalation_id": escalation_id,
                "episode_id": escalation.episode_id,
                "status": target.value,
                "failure_reason": failure_reason,
            }
        )
        return escalation

    def handle_escalation_timeout(
        self,
        escalation: EscalationProtocol,
        next_level: EscalationLevel,
    ) -> EscalationProtocol:
        """Fail a timed-out escalation and open the next one, urgently."""
        episode = self.store.get_episode(escalation.episode_id)
        if episode is None:
            raise episode_not_found(escalation.episode_id)

        self.update_escalation_status(
            escalation.escalation_id,
            EscalationStatus.FAILED,
            failure_reason=TIMEOUT_FAILURE_REASON,
            episode_id=escalation.episode_id,
        )
        replacement = self._create_escalation(
            episode,
            next_level,
            reason=f"{TIMEOUT_FAILURE_REASON} at {escalation.escalation_level.value}",
            urgent_response=True,
            previous_escalation_id=escalation.escalation_id,
        )

        logger.critical(
            "ESCALATION_TIMED_OUT",
            extra={
                "escalation_id": escalation.escalation_id,
                "replacement_id": replacement.escalation_id,
                "episode_id": escalation.episode_id,
                "from_level": escalation.escalation_level.value,
                "to_level": next_level.value,
            }
        )

        if self.notifier is not None:
            self.notifier.send_escalation_alert(episode, replacement)
        return replacement

    def _send_timeout_warning(self, escalation: EscalationProtocol, minutes_remaining: int) -> None:
        episode = self.store.get_episode(escalation.episode_id)
        if episode is None:
            raise episode_not_found(escalation.episode_id)
        if self.notifier is not None:
            self.notifier.send_timeout_warning(episode, escalation, minutes_remaining)
        self.store.update_record(
            RecordKind.ESCALATION,
            escalation.escalation_id,
            escalation.episode_id,
            {"timeoutWarningSentAt": format_timestamp(self.clock())},
        )

    def check_escalation_timeouts(self, now: Optional[datetime] = None) -> TimeoutSweepResult:
        """Sweep open escalations once.

        A failure on one escalation is logged and recorded in the result;
        the sweep carries on with the rest.
        """
        now = now or self.clock()
        escalations = [
            EscalationProtocol.from_item(item)
            for item in self.store.query_active_records(RecordKind.ESCALATION)
        ]
        plan = plan_escalation_timeouts(now, escalations, self.config.timeout_warning_minutes)
        result = TimeoutSweepResult(checked=len(escalations))

        for escalation, next_level in plan.timed_out:
            try:
                replacement = self.handle_escalation_timeout(escalation, next_level)
            except Exception as e:
                logger.error(
                    "ESCALATION_TIMEOUT_HANDLING_FAILED",
                    extra={
                        "escalation_id": escalation.escalation_id,
                        "episode_id": escalation.episode_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                result.failed.append(escalation.escalation_id)
                continue
            result.escalated.append({
                "failedEscalationId": escalation.escalation_id,
                "newEscalationId": replacement.escalation_id,
                "escalationLevel": replacement.escalation_level.value,
            })

        for escalation, minutes_remaining in plan.warnings:
            try:
                self._send_timeout_warning(escalation, minutes_remaining)
            except Exception as e:
                logger.error(
                    "TIMEOUT_WARNING_FAILED",
                    extra={
                        "escalation_id": escalation.escalation_id,
                        "episode_id": escalation.episode_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                result.failed.append(escalation.escalation_id)
                continue
            result.warnings_sent += 1

        logger.info(
            "ESCALATION_TIMEOUT_SWEEP_COMPLETED",
            extra={
                "checked": result.checked,
                "escalated": len(result.escalated),
                "warnings_sent": result.warnings_sent,
                "failed": len(result.failed),
            }
        )
        return result

"""Emergency Alert Engine.

Creates emergency alerts for an episode, assigns supervisors by severity,
and answers status and work-queue queries from the open alerts.

Alert lifecycle:
    active -> acknowledged -> resolved
    active -> resolved

"Active" in status, queue and response handling means any alert that is
not yet resolved.
"""
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from carebridge.shared.models import Episode, format_timestamp, minutes_between, utc_now
from carebridge.shared.utils import hash_pii, hash_text_for_audit
from .config import (
    EMERGENCY_SUPERVISORS,
    RESPONSE_TIME_MINUTES,
    SUPERVISORS_PER_SEVERITY,
    EmergencyConfig,
)
from .episode_store import EpisodeFlag, EpisodeStore, RecordKind
from .errors import InvalidTransitionError, episode_not_found
from .models import (
    AlertResult,
    AlertSeverity,
    AlertStatus,
    EmergencyAlert,
    EmergencyQueueItem,
    EmergencyStats,
    EmergencyStatus,
    ResponseAction,
    ResponseEvent,
    ResponseUpdateResult,
)

logger = logging.getLogger(__name__)


def assign_supervisors(severity: AlertSeverity) -> List[str]:
    """Supervisors paged for a severity: a fixed prefix of the pool."""
    return list(EMERGENCY_SUPERVISORS[:SUPERVISORS_PER_SEVERITY[severity]])


def response_time_for(severity: AlertSeverity) -> int:
    """Target response time in minutes for a severity."""
    return RESPONSE_TIME_MINUTES[severity]


def determine_response_status(alerts: List[EmergencyAlert]) -> str:
    """Derive the episode response status from its alerts.

    Returns:
        "resolved" when there are no alerts or all are resolved,
        "acknowledged" when any is acknowledged, otherwise "pending"
    """
    if not alerts:
        return "resolved"
    if all(alert.status == AlertStatus.RESOLVED for alert in alerts):
        return "resolved"
    if any(alert.status == AlertStatus.ACKNOWLEDGED for alert in alerts):
        return "acknowledged"
    return "pending"


class EmergencyAlertService:
    """Owns the emergency alert lifecycle."""

    def __init__(
        self,
        store: EpisodeStore,
        config: Optional[EmergencyConfig] = None,
        clock: Callable = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        """Initialize alert service.

        Args:
            store: Episode store adapter
            config: Thresholds and queue defaults
            clock: Returns the current aware UTC datetime
            id_factory: Produces new alert ids
        """
        self.store = store
        self.config = config or EmergencyConfig()
        self.clock = clock
        self.id_factory = id_factory

    def _require_episode(self, episode_id: str) -> Episode:
        episode = self.store.get_episode(episode_id)
        if episode is None:
            raise episode_not_found(episode_id)
        return episode

    def process_emergency_alert(
        self,
        episode_id: str,
        alert_type: str,
        severity: Any = AlertSeverity.HIGH.value,
        additional_info: Optional[Dict[str, Any]] = None,
    ) -> AlertResult:
        """Create an alert for an episode and flag the episode as an emergency.

        Args:
            episode_id: Episode to alert on
            alert_type: Free-form classification, e.g. "cardiac_emergency"
            severity: critical, high or medium; anything else counts as medium
            additional_info: Free-form context stored with the alert

        Returns:
            AlertResult with the alert, planned notification count and
            response-time estimate

        Raises:
            NotFoundError: If the episode does not exist
        """
        episode = self._require_episode(episode_id)
        effective_severity = AlertSeverity.parse(severity)
        supervisors = assign_supervisors(effective_severity)
        now = self.clock()

        alert = EmergencyAlert(
            alert_id=self.id_factory(),
            episode_id=episode_id,
            alert_type=alert_type,
            severity=effective_severity,
            created_at=now,
            status=AlertStatus.ACTIVE,
            assigned_supervisors=supervisors,
            additional_info=additional_info,
        )

        flag = EpisodeFlag.EMERGENCY
        self.store.append_alert(
            episode_id,
            alert,
            snapshot={
                flag.attribute: flag.active_value,
                flag.flagged_at_attribute: format_timestamp(now),
                "lastEmergencyAlert": alert.to_item(),
                "assignedEmergencySupervisors": supervisors,
            },
        )

        logger.critical(
            "EMERGENCY_ALERT_CREATED",
            extra={
                "alert_id": alert.alert_id,
                "episode_id": episode_id,
                "patient_id_hash": hash_pii(episode.patient_id),
                "alert_type": alert_type,
                "severity": effective_severity.value,
                "assigned_supervisors": supervisors,
            }
        )

        return AlertResult(
            alert_id=alert.alert_id,
            episode=episode,
            alert=alert,
            notifications_sent=len(supervisors),
            estimated_response_time=response_time_for(effective_severity),
            severity=effective_severity,
        )

    def get_active_alerts(self, episode_id: str) -> List[EmergencyAlert]:
        """Open (active or acknowledged) alerts for an episode."""
        return [
            EmergencyAlert.from_item(item)
            for item in self.store.query_active_records_for_episode(episode_id, RecordKind.ALERT)
        ]

    def get_emergency_status(self, episode_id: str) -> EmergencyStatus:
        """Emergency status of one episode, derived from its open alerts.

        Raises:
            NotFoundError: If the episode does not exist
        """
        episode = self._require_episode(episode_id)
        active_alerts = self.get_active_alerts(episode_id)
        last_alert = max(active_alerts, key=lambda a: a.created_at, default=None)

        return EmergencyStatus(
            episode_id=episode_id,
            is_emergency=episode.is_emergency or bool(active_alerts),
            active_alerts=active_alerts,
            response_status=determine_response_status(active_alerts),
            assigned_supervisors=list(last_alert.assigned_supervisors) if last_alert else [],
            estimated_response_time=response_time_for(last_alert.severity) if last_alert else 0,
            last_alert_time=last_alert.created_at if last_alert else None,
        )

    def get_emergency_queue(
        self,
        supervisor_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[EmergencyQueueItem]:
        """Priority-ordered open alerts across flagged episodes.

        Ordered by severity (critical first), then longest wait first.

        Args:
            supervisor_id: Only alerts assigned to this supervisor
            limit: Maximum items returned

        Returns:
            At most `limit` queue items
        """
        if limit is None:
            limit = self.config.default_queue_limit
        now = self.clock()

        episodes = self.store.query_active_by_flag(
            EpisodeFlag.EMERGENCY, limit=limit * self.config.queue_overfetch_factor,
        )

        items: List[EmergencyQueueItem] = []
        for episode in episodes:
            for alert in self.get_active_alerts(episode.episode_id):
                if supervisor_id and supervisor_id not in alert.assigned_supervisors:
                    continue
                items.append(EmergencyQueueItem(
                    episode_id=episode.episode_id,
                    patient_id=episode.patient_id,
                    alert_id=alert.alert_id,
                    alert_type=alert.alert_type,
                    severity=alert.severity,
                    created_at=alert.created_at,
                    wait_time=minutes_between(alert.created_at, now),
                    assigned_supervisors=list(alert.assigned_supervisors),
                    primary_complaint=episode.symptoms.primary_complaint,
                    symptom_severity=episode.symptoms.severity,
                    status=alert.status,
                ))

        items.sort(key=lambda item: (-item.severity.rank, -item.wait_time))
        return items[:limit]

    def _transition(self, alert: EmergencyAlert, target: AlertStatus) -> Dict[str, Any]:
        """Apply a status change in place and return the changed fields."""
        if not alert.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Alert {alert.alert_id} cannot move from {alert.status.value} to {target.value}"
            )

        now = self.clock()
        alert.status = target
        alert.updated_at = now
        fields: Dict[str, Any] = {
            "status": target.value,
            "updatedAt": format_timestamp(now),
        }
        if target == AlertStatus.ACKNOWLEDGED:
            alert.acknowledged_at = now
            fields["acknowledgedAt"] = format_timestamp(now)
        else:
            alert.resolved_at = now
            fields["resolvedAt"] = format_timestamp(now)
        if alert.response_time is None:
            alert.response_time = minutes_between(alert.created_at, now)
            fields["responseTime"] = alert.response_time
        return fields

    def update_emergency_response(
        self,
        episode_id: str,
        supervisor_id: str,
        response_action: str,
        notes: Optional[str] = None,
    ) -> ResponseUpdateResult:
        """Record a supervisor response and apply its alert transitions.

        "acknowledge" moves active alerts to acknowledged; "resolve" moves
        every open alert to resolved and clears the emergency flag. Other
        actions are recorded only.

        Raises:
            NotFoundError: If the episode does not exist
        """
        episode = self._require_episode(episode_id)
        event = ResponseEvent(
            supervisor_id=supervisor_id,
            response_action=response_action,
            notes=notes,
            timestamp=self.clock(),
        )
        self.store.append_episode_list(
            episode_id,
            "emergencyResponses",
            event.to_item(),
            fields={"emergencyResponse": event.to_item()},
        )

        try:
            action = ResponseAction(response_action)
        except ValueError:
            action = None

        updated: List[EmergencyAlert] = []
        if action is not None:
            target = (
                AlertStatus.ACKNOWLEDGED if action == ResponseAction.ACKNOWLEDGE
                else AlertStatus.RESOLVED
            )
            for alert in self.get_active_alerts(episode_id):
                if alert.status == target:
                    continue
                fields = self._transition(alert, target)
                self.store.update_record(RecordKind.ALERT, alert.alert_id, episode_id, fields)
                updated.append(alert)

        if action == ResponseAction.RESOLVE:
            self.store.update_episode_fields(episode_id, {
                EpisodeFlag.EMERGENCY.attribute: AlertStatus.RESOLVED.value,
                "emergencyResolvedAt": format_timestamp(event.timestamp),
            })

        logger.info(
            "EMERGENCY_RESPONSE_RECORDED",
            extra={
                "episode_id": episode_id,
                "patient_id_hash": hash_pii(episode.patient_id),
                "supervisor_id": supervisor_id,
                "response_action": response_action,
                "notes_hash": hash_text_for_audit(notes) if notes else None,
                "alerts_updated": len(updated),
            }
        )

        return ResponseUpdateResult(episode=episode, response=event, updated_alerts=updated)

    def get_emergency_stats(self, limit: Optional[int] = None) -> EmergencyStats:
        """Digest of the current queue for the periodic status update."""
        queue = self.get_emergency_queue(limit=limit or self.config.max_queue_limit)
        targets = [response_time_for(item.severity) for item in queue]

        return EmergencyStats(
            active_emergencies=len(queue),
            critical_count=sum(1 for item in queue if item.severity == AlertSeverity.CRITICAL),
            average_response_time=round(sum(targets) / len(targets), 1) if targets else 0.0,
            overdue_count=sum(
                1 for item, target in zip(queue, targets) if item.wait_time > target
            ),
        )

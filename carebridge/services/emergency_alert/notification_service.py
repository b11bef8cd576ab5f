"""Notification Dispatcher for emergency traffic.

Turns alert, escalation and response events into SNS messages. Emergency
traffic (immediate alerts, escalations, timeout warnings) goes to the
emergency-alert topic; response confirmations and status digests go to
the general notification topic. Supervisor-specific copies are published to
the emergency topic with a `supervisor_id` attribute so that subscription
filter policies can route them.

Failure Handling:
    - Delivery failure never fails the alert/escalation that caused it
    - Every send returns the number of messages actually published
    - Failures are logged as NOTIFICATION_DELIVERY_FAILED
"""
import json
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from carebridge.shared.models import Episode, format_timestamp, utc_now
from carebridge.shared.utils import hash_pii
from .models import (
    AlertSeverity,
    EmergencyAlert,
    EmergencyStats,
    EscalationProtocol,
    ResponseEvent,
)

logger = logging.getLogger(__name__)

# SNS subjects are limited to 100 characters
MAX_SUBJECT_LENGTH = 100

# Digest thresholds for the reported system load
CRITICAL_LOAD_THRESHOLD = 5
HIGH_LOAD_THRESHOLD = 10

# Minutes remaining at or below which a timeout warning is marked imminent
IMMINENT_ESCALATION_MINUTES = 2


class NotificationType(Enum):
    """Outbound message kinds."""
    IMMEDIATE_ALERT = "immediate_alert"
    ESCALATION_ALERT = "escalation_alert"
    RESPONSE_CONFIRMATION = "response_confirmation"
    TIMEOUT_WARNING = "timeout_warning"
    STATUS_UPDATE = "status_update"


@dataclass(frozen=True)
class EmergencyNotificationMessage:
    """Immutable outbound message; transmitted, never stored."""
    message_type: NotificationType
    subject: str
    payload: Dict[str, Any]
    episode_id: Optional[str] = None
    urgency_level: Optional[str] = None
    severity: Optional[str] = None
    high_priority: bool = False
    supervisor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def for_supervisor(self, supervisor_id: str) -> "EmergencyNotificationMessage":
        """Personal copy of this message for one supervisor."""
        return replace(
            self,
            subject=f"[PERSONAL ALERT] {self.subject}",
            supervisor_id=supervisor_id,
        )

    def to_sns_message(self) -> str:
        body = {
            "type": self.message_type.value,
            **self.payload,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.supervisor_id:
            body["supervisorId"] = self.supervisor_id
        return json.dumps(body, default=str)

    def message_attributes(self) -> Dict[str, Dict[str, str]]:
        """SNS MessageAttributes used by subscription filter policies."""
        notification_type = self.message_type.value
        if self.supervisor_id:
            notification_type = f"{notification_type}_personal"

        attributes = {"notification_type": notification_type}
        if self.urgency_level:
            attributes["urgency_level"] = self.urgency_level
        if self.severity:
            attributes["severity"] = self.severity
        if self.episode_id:
            attributes["episode_id"] = self.episode_id
        attributes["high_priority"] = "true" if self.high_priority else "false"
        if self.supervisor_id:
            attributes["supervisor_id"] = self.supervisor_id
            attributes["personal_alert"] = "true"

        return {
            name: {"DataType": "String", "StringValue": value}
            for name, value in attributes.items()
        }

    def sns_subject(self) -> str:
        return self.subject[:MAX_SUBJECT_LENGTH]


def _urgency(episode: Episode) -> str:
    return episode.urgency_level.value if episode.urgency_level else "unknown"


def system_status(stats: EmergencyStats) -> str:
    """Headline load for the periodic digest."""
    if stats.critical_count > CRITICAL_LOAD_THRESHOLD:
        return "CRITICAL LOAD"
    if stats.active_emergencies > HIGH_LOAD_THRESHOLD:
        return "HIGH LOAD"
    if stats.active_emergencies > 0:
        return "ACTIVE"
    return "NORMAL"


class EmergencyNotificationDispatcher:
    """Publishes emergency notifications to SNS."""

    def __init__(
        self,
        emergency_topic_arn: str,
        notification_topic_arn: str,
        sns_client: Any = None,
        enabled: bool = True,
        region: Optional[str] = None,
    ):
        """Initialize dispatcher.

        Args:
            emergency_topic_arn: Topic for emergency traffic
            notification_topic_arn: Topic for general notifications
            sns_client: Pre-built SNS client (injected for testing)
            enabled: Whether publishing is enabled (disable for local dev)
            region: AWS region (defaults to AWS_REGION env var)
        """
        self.emergency_topic_arn = emergency_topic_arn
        self.notification_topic_arn = notification_topic_arn
        self.enabled = enabled
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        self._sns_client = sns_client

        logger.info(
            "NOTIFICATION_DISPATCHER_INITIALIZED",
            extra={
                "emergency_topic_arn": emergency_topic_arn,
                "notification_topic_arn": notification_topic_arn,
                "enabled": enabled,
            }
        )

    @property
    def sns_client(self):
        """Lazy initialization of SNS client."""
        if self._sns_client is None and self.enabled:
            import boto3
            self._sns_client = boto3.client("sns", region_name=self.region)
        return self._sns_client

    def publish(self, topic_arn: str, message: EmergencyNotificationMessage) -> bool:
        """Publish one message.

        Returns:
            True if SNS accepted the message, False otherwise

        Note:
            Never raises; failures are logged.
        """
        if not self.enabled:
            logger.info(
                "NOTIFICATION_SKIPPED",
                extra={
                    "notification_type": message.message_type.value,
                    "episode_id": message.episode_id,
                    "reason": "publishing_disabled",
                }
            )
            return False

        try:
            response = self.sns_client.publish(
                TopicArn=topic_arn,
                Subject=message.sns_subject(),
                Message=message.to_sns_message(),
                MessageAttributes=message.message_attributes(),
            )
        except Exception as e:
            logger.error(
                "NOTIFICATION_DELIVERY_FAILED",
                extra={
                    "notification_type": message.message_type.value,
                    "episode_id": message.episode_id,
                    "supervisor_id": message.supervisor_id,
                    "topic_arn": topic_arn,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return False

        logger.info(
            "NOTIFICATION_PUBLISHED",
            extra={
                "notification_type": message.message_type.value,
                "episode_id": message.episode_id,
                "supervisor_id": message.supervisor_id,
                "message_id": response.get("MessageId"),
            }
        )
        return True

    def _fan_out(
        self,
        message: EmergencyNotificationMessage,
        supervisors: List[str],
    ) -> int:
        """Broadcast, then one personal copy per supervisor.

        Each publish is independent; one failure does not stop the rest.
        """
        delivered = int(self.publish(self.emergency_topic_arn, message))
        for supervisor_id in supervisors:
            delivered += int(self.publish(
                self.emergency_topic_arn, message.for_supervisor(supervisor_id)
            ))
        return delivered

    def send_immediate_alert(self, episode: Episode, alert: EmergencyAlert) -> int:
        """Broadcast a new emergency alert and page its supervisors.

        Returns:
            Number of messages published
        """
        prefix = {
            AlertSeverity.CRITICAL: "[CRITICAL] ",
            AlertSeverity.HIGH: "[HIGH] ",
        }.get(alert.severity, "")
        message = EmergencyNotificationMessage(
            message_type=NotificationType.IMMEDIATE_ALERT,
            subject=f"{prefix}EMERGENCY ALERT - Episode {episode.episode_id}",
            payload={
                **episode.to_summary(),
                "alert": alert.to_item(),
                "requiresImmediateResponse": True,
            },
            episode_id=episode.episode_id,
            urgency_level=_urgency(episode),
            severity=alert.severity.value,
            high_priority=alert.severity != AlertSeverity.MEDIUM,
        )

        logger.critical(
            "EMERGENCY_NOTIFICATION_SENDING",
            extra={
                "episode_id": episode.episode_id,
                "patient_id_hash": hash_pii(episode.patient_id),
                "alert_id": alert.alert_id,
                "severity": alert.severity.value,
                "supervisor_count": len(alert.assigned_supervisors),
            }
        )
        return self._fan_out(message, alert.assigned_supervisors)

    def send_escalation_alert(self, episode: Episode, escalation: EscalationProtocol) -> int:
        """Broadcast an escalation with its level and path, paging the new pool."""
        prefix = "[URGENT] " if escalation.urgent_response else ""
        message = EmergencyNotificationMessage(
            message_type=NotificationType.ESCALATION_ALERT,
            subject=(
                f"{prefix}ESCALATION REQUIRED - {escalation.escalation_level.value} "
                f"- Episode {episode.episode_id}"
            ),
            payload={
                **episode.to_summary(),
                "escalationId": escalation.escalation_id,
                "escalationLevel": escalation.escalation_level.value,
                "escalationReason": escalation.reason,
                "assignedSupervisors": list(escalation.assigned_supervisors),
                "escalationPath": [step.to_item() for step in escalation.escalation_path],
                "expectedResponseTime": escalation.timeout_minutes,
            },
            episode_id=episode.episode_id,
            urgency_level=_urgency(episode),
            severity=escalation.escalation_level.value,
            high_priority=True,
        )
        return self._fan_out(message, escalation.assigned_supervisors)

    def send_response_confirmation(self, episode: Episode, response: ResponseEvent) -> int:
        """Confirm a supervisor response on the general topic."""
        message = EmergencyNotificationMessage(
            message_type=NotificationType.RESPONSE_CONFIRMATION,
            subject=f"Emergency Response Confirmed - Episode {episode.episode_id}",
            payload={
                "episodeId": episode.episode_id,
                "patientId": episode.patient_id,
                "response": response.to_item(),
                "status": "confirmed",
            },
            episode_id=episode.episode_id,
            urgency_level=_urgency(episode),
        )
        return int(self.publish(self.notification_topic_arn, message))

    def send_timeout_warning(
        self,
        episode: Episode,
        escalation: EscalationProtocol,
        minutes_remaining: int,
    ) -> int:
        """Warn the assigned pool that an escalation is about to time out."""
        message = EmergencyNotificationMessage(
            message_type=NotificationType.TIMEOUT_WARNING,
            subject=(
                f"TIMEOUT WARNING - {minutes_remaining} min remaining "
                f"- Episode {episode.episode_id}"
            ),
            payload={
                "episodeId": episode.episode_id,
                "patientId": episode.patient_id,
                "escalationId": escalation.escalation_id,
                "escalationLevel": escalation.escalation_level.value,
                "assignedSupervisors": list(escalation.assigned_supervisors),
                "minutesRemaining": minutes_remaining,
                "escalationImminent": minutes_remaining <= IMMINENT_ESCALATION_MINUTES,
            },
            episode_id=episode.episode_id,
            urgency_level=_urgency(episode),
            severity=escalation.escalation_level.value,
            high_priority=True,
        )
        return self._fan_out(message, escalation.assigned_supervisors)

    def send_emergency_status_update(self, stats: EmergencyStats) -> int:
        """Publish the periodic queue digest to the general topic."""
        status = system_status(stats)
        message = EmergencyNotificationMessage(
            message_type=NotificationType.STATUS_UPDATE,
            subject=f"Emergency System Status - {status}",
            payload={**stats.to_dict(), "systemStatus": status},
            high_priority=status == "CRITICAL LOAD",
        )
        return int(self.publish(self.notification_topic_arn, message))

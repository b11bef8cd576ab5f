"""Emergency Alert & Escalation service.

Detects episodes that need urgent human attention, pages supervisors,
tracks alert and escalation lifecycles, escalates late responses and
keeps a priority-ordered work queue.

This service:
1. Creates emergency alerts and assigns supervisors by severity
2. Escalates episodes up a fixed supervisor ladder
3. Re-escalates automatically when an escalation times out
4. Publishes alert, escalation and digest notifications to SNS

Endpoints:
- POST /alert - Process an emergency alert
- POST /escalate - Process an escalation
- PUT /escalate - Update escalation status
- POST / - Process an emergency case
- GET /{episodeId} - Emergency status
- GET / - Emergency queue
- PUT / - Record a supervisor response
"""

from .alert_service import EmergencyAlertService
from .episode_store import EpisodeFlag, EpisodeStore, RecordKind
from .escalation_service import EscalationProtocolService, plan_escalation_timeouts
from .handler import EmergencyAlertOrchestrator, lambda_handler, timeout_sweep_handler
from .models import (
    AlertSeverity,
    AlertStatus,
    EmergencyAlert,
    EscalationLevel,
    EscalationProtocol,
    EscalationStatus,
)
from .notification_service import EmergencyNotificationDispatcher, EmergencyNotificationMessage

__all__ = [
    "EmergencyAlertService",
    "EpisodeFlag",
    "EpisodeStore",
    "RecordKind",
    "EscalationProtocolService",
    "plan_escalation_timeouts",
    "EmergencyAlertOrchestrator",
    "lambda_handler",
    "timeout_sweep_handler",
    "AlertSeverity",
    "AlertStatus",
    "EmergencyAlert",
    "EscalationLevel",
    "EscalationProtocol",
    "EscalationStatus",
    "EmergencyNotificationDispatcher",
    "EmergencyNotificationMessage",
]

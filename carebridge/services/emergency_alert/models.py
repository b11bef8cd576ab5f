"""Emergency alert and escalation domain models.

Severity, status and escalation level are closed enums with a single
canonical ordering each. Records serialize to camelCase items with ISO-8601
timestamps; the same item shape is used in the dedicated tables and in the
lists embedded on the episode record.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from carebridge.shared.models import Episode, format_timestamp, parse_timestamp


class AlertSeverity(Enum):
    """Alert severity, ordered critical > high > medium."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "AlertSeverity":
        """Parse a severity; unrecognized values fall back to MEDIUM."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM


_SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 3,
    AlertSeverity.HIGH: 2,
    AlertSeverity.MEDIUM: 1,
}


class AlertStatus(Enum):
    """State machine for an emergency alert.

    active -> acknowledged -> resolved, or active -> resolved.
    resolved is terminal.
    """
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

    @property
    def is_open(self) -> bool:
        return self != AlertStatus.RESOLVED

    def can_transition_to(self, target: "AlertStatus") -> bool:
        return target in _ALERT_TRANSITIONS[self]


_ALERT_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}


class EscalationLevel(Enum):
    """Escalation ladder, ordered level-1 < level-2 < level-3 < critical."""
    LEVEL_1 = "level-1"
    LEVEL_2 = "level-2"
    LEVEL_3 = "level-3"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def next(self) -> "EscalationLevel":
        """Next rung up; critical stays critical."""
        return _LEVEL_ORDER[min(self.rank + 1, len(_LEVEL_ORDER) - 1)]

    @classmethod
    def parse(cls, value: Any) -> Optional["EscalationLevel"]:
        """Parse a level, None if missing or invalid."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_LEVEL_ORDER = [
    EscalationLevel.LEVEL_1,
    EscalationLevel.LEVEL_2,
    EscalationLevel.LEVEL_3,
    EscalationLevel.CRITICAL,
]


class EscalationStatus(Enum):
    """State machine for an escalation record.

    active -> in-progress -> completed; active/in-progress -> failed.
    completed and failed are terminal.
    """
    ACTIVE = "active"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_open(self) -> bool:
        return self in (EscalationStatus.ACTIVE, EscalationStatus.IN_PROGRESS)

    def can_transition_to(self, target: "EscalationStatus") -> bool:
        return target in _ESCALATION_TRANSITIONS[self]


_ESCALATION_TRANSITIONS: Dict[EscalationStatus, FrozenSet[EscalationStatus]] = {
    EscalationStatus.ACTIVE: frozenset({EscalationStatus.IN_PROGRESS, EscalationStatus.FAILED}),
    EscalationStatus.IN_PROGRESS: frozenset({EscalationStatus.COMPLETED, EscalationStatus.FAILED}),
    EscalationStatus.COMPLETED: frozenset(),
    EscalationStatus.FAILED: frozenset(),
}


class ResponseAction(Enum):
    """Supervisor response actions that change alert status."""
    ACKNOWLEDGE = "acknowledge"
    RESOLVE = "resolve"


@dataclass
class EmergencyAlert:
    """One emergency notification cycle for an episode."""
    alert_id: str
    episode_id: str
    alert_type: str
    severity: AlertSeverity
    created_at: datetime
    status: AlertStatus
    assigned_supervisors: List[str]
    additional_info: Optional[Dict[str, Any]] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    response_time: Optional[int] = None     # minutes from creation to first response
    updated_at: Optional[datetime] = None

    def to_item(self) -> Dict[str, Any]:
        item = {
            "alertId": self.alert_id,
            "episodeId": self.episode_id,
            "alertType": self.alert_type,
            "severity": self.severity.value,
            "createdAt": format_timestamp(self.created_at),
            "status": self.status.value,
            "assignedSupervisors": list(self.assigned_supervisors),
            "additionalInfo": self.additional_info,
            "acknowledgedAt": format_timestamp(self.acknowledged_at),
            "resolvedAt": format_timestamp(self.resolved_at),
            "responseTime": self.response_time,
            "updatedAt": format_timestamp(self.updated_at),
        }
        return {k: v for k, v in item.items() if v is not None}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "EmergencyAlert":
        return cls(
            alert_id=item["alertId"],
            episode_id=item["episodeId"],
            alert_type=item.get("alertType", ""),
            severity=AlertSeverity.parse(item.get("severity")),
            created_at=parse_timestamp(item["createdAt"]),
            status=AlertStatus(item.get("status", AlertStatus.ACTIVE.value)),
            assigned_supervisors=list(item.get("assignedSupervisors", [])),
            additional_info=item.get("additionalInfo"),
            acknowledged_at=parse_timestamp(item.get("acknowledgedAt")),
            resolved_at=parse_timestamp(item.get("resolvedAt")),
            response_time=item.get("responseTime"),
            updated_at=parse_timestamp(item.get("updatedAt")),
        )


@dataclass(frozen=True)
class EscalationStep:
    """One rung of an escalation path and the pool it pages."""
    level: EscalationLevel
    supervisors: List[str]

    def to_item(self) -> Dict[str, Any]:
        return {"level": self.level.value, "supervisors": list(self.supervisors)}


@dataclass
class EscalationProtocol:
    """One escalation cycle for an episode."""
    escalation_id: str
    episode_id: str
    escalation_level: EscalationLevel
    reason: str
    created_at: datetime
    status: EscalationStatus
    assigned_supervisors: List[str]
    escalation_path: List[EscalationStep]
    timeout_minutes: int
    urgent_response: bool = False
    target_level: Optional[EscalationLevel] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    previous_escalation_id: Optional[str] = None
    timeout_warning_sent_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def elapsed_minutes(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 60

    def to_item(self) -> Dict[str, Any]:
        item = {
            "escalationId": self.escalation_id,
            "episodeId": self.episode_id,
            "escalationLevel": self.escalation_level.value,
            "reason": self.reason,
            "targetLevel": self.target_level.value if self.target_level else None,
            "urgentResponse": self.urgent_response,
            "createdAt": format_timestamp(self.created_at),
            "status": self.status.value,
            "assignedSupervisors": list(self.assigned_supervisors),
            "escalationPath": [step.to_item() for step in self.escalation_path],
            "timeoutMinutes": self.timeout_minutes,
            "completedAt": format_timestamp(self.completed_at),
            "failureReason": self.failure_reason,
            "previousEscalationId": self.previous_escalation_id,
            "timeoutWarningSentAt": format_timestamp(self.timeout_warning_sent_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        return {k: v for k, v in item.items() if v is not None}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "EscalationProtocol":
        return cls(
            escalation_id=item["escalationId"],
            episode_id=item["episodeId"],
            escalation_level=EscalationLevel.parse(item.get("escalationLevel")) or EscalationLevel.LEVEL_1,
            reason=item.get("reason", ""),
            created_at=parse_timestamp(item["createdAt"]),
            status=EscalationStatus(item.get("status", EscalationStatus.ACTIVE.value)),
            assigned_supervisors=list(item.get("assignedSupervisors", [])),
            escalation_path=[
                EscalationStep(
                    level=EscalationLevel(step["level"]),
                    supervisors=list(step.get("supervisors", [])),
                )
                for step in item.get("escalationPath", [])
            ],
            timeout_minutes=int(item.get("timeoutMinutes", 0)),
            urgent_response=bool(item.get("urgentResponse", False)),
            target_level=EscalationLevel.parse(item.get("targetLevel")),
            completed_at=parse_timestamp(item.get("completedAt")),
            failure_reason=item.get("failureReason"),
            previous_escalation_id=item.get("previousEscalationId"),
            timeout_warning_sent_at=parse_timestamp(item.get("timeoutWarningSentAt")),
            updated_at=parse_timestamp(item.get("updatedAt")),
        )


@dataclass(frozen=True)
class ResponseEvent:
    """A supervisor's response to an emergency episode."""
    supervisor_id: str
    response_action: str
    timestamp: datetime
    notes: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        item = {
            "supervisorId": self.supervisor_id,
            "responseAction": self.response_action,
            "notes": self.notes,
            "timestamp": format_timestamp(self.timestamp),
        }
        return {k: v for k, v in item.items() if v is not None}


@dataclass(frozen=True)
class EmergencyQueueItem:
    """Derived, read-only queue entry for one open alert."""
    episode_id: str
    patient_id: str
    alert_id: str
    alert_type: str
    severity: AlertSeverity
    created_at: datetime
    wait_time: int
    assigned_supervisors: List[str]
    primary_complaint: str
    symptom_severity: int
    status: AlertStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episodeId": self.episode_id,
            "patientId": self.patient_id,
            "alertId": self.alert_id,
            "alertType": self.alert_type,
            "severity": self.severity.value,
            "createdAt": format_timestamp(self.created_at),
            "waitTime": self.wait_time,
            "assignedSupervisors": list(self.assigned_supervisors),
            "symptoms": {
                "primaryComplaint": self.primary_complaint,
                "severity": self.symptom_severity,
            },
            "status": self.status.value,
        }


@dataclass(frozen=True)
class EmergencyStatus:
    """Derived emergency status of one episode."""
    episode_id: str
    is_emergency: bool
    active_alerts: List[EmergencyAlert]
    response_status: str
    assigned_supervisors: List[str]
    estimated_response_time: int
    last_alert_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episodeId": self.episode_id,
            "isEmergency": self.is_emergency,
            "activeAlerts": [alert.to_item() for alert in self.active_alerts],
            "lastAlertTime": format_timestamp(self.last_alert_time),
            "responseStatus": self.response_status,
            "assignedSupervisors": list(self.assigned_supervisors),
            "estimatedResponseTime": self.estimated_response_time,
        }


@dataclass(frozen=True)
class AlertResult:
    """Outcome of processing an emergency alert."""
    alert_id: str
    episode: Episode
    alert: EmergencyAlert
    notifications_sent: int     # planned pages, not delivery confirmations
    estimated_response_time: int
    severity: AlertSeverity


@dataclass(frozen=True)
class ResponseUpdateResult:
    """Outcome of recording a supervisor response."""
    episode: Episode
    response: ResponseEvent
    updated_alerts: List[EmergencyAlert] = field(default_factory=list)

    @property
    def timestamp(self) -> datetime:
        return self.response.timestamp


@dataclass(frozen=True)
class EscalationAssessment:
    """Advisory result of checking whether an episode needs escalation."""
    required: bool
    reason: str
    target_level: EscalationLevel
    urgent_response: bool
    timeout_minutes: int


@dataclass(frozen=True)
class EscalationResult:
    """Outcome of processing an escalation."""
    escalation_id: str
    episode: Episode
    escalation: EscalationProtocol
    target_level: EscalationLevel
    assigned_supervisors: List[str]
    expected_response_time: int


@dataclass(frozen=True)
class EmergencyStats:
    """Periodic digest of the emergency queue."""
    active_emergencies: int
    critical_count: int
    average_response_time: float
    overdue_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeEmergencies": self.active_emergencies,
            "criticalCount": self.critical_count,
            "averageResponseTime": self.average_response_time,
            "overdueCount": self.overdue_count,
        }


@dataclass
class TimeoutSweepResult:
    """Outcome of one escalation timeout sweep."""
    checked: int = 0
    escalated: List[Dict[str, str]] = field(default_factory=list)
    warnings_sent: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "escalated": list(self.escalated),
            "warningsSent": self.warnings_sent,
            "failed": list(self.failed),
        }

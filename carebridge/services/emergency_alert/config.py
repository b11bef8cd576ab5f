"""Emergency alert configuration: rosters, response targets and timeouts.

The supervisor pool and escalation rosters are fixed, ordered tables.
Assignment always takes a prefix of a roster so that the same severity
always pages the same people.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

from carebridge.shared.models import UrgencyLevel
from .models import AlertSeverity, EscalationLevel


# Ordered emergency supervisor pool
EMERGENCY_SUPERVISORS: Tuple[str, ...] = (
    "emergency-supervisor-1",
    "emergency-supervisor-2",
    "emergency-supervisor-3",
)

# How many supervisors (pool prefix length) each severity pages
SUPERVISORS_PER_SEVERITY: Dict[AlertSeverity, int] = {
    AlertSeverity.CRITICAL: 3,
    AlertSeverity.HIGH: 2,
    AlertSeverity.MEDIUM: 1,
}

# Target response time in minutes, returned to the caller as an estimate
RESPONSE_TIME_MINUTES: Dict[AlertSeverity, int] = {
    AlertSeverity.CRITICAL: 2,
    AlertSeverity.HIGH: 5,
    AlertSeverity.MEDIUM: 10,
}

ESCALATION_SUPERVISORS: Dict[EscalationLevel, Tuple[str, ...]] = {
    EscalationLevel.LEVEL_1: ("emergency-supervisor-1", "emergency-supervisor-2"),
    EscalationLevel.LEVEL_2: ("senior-supervisor-1", "senior-supervisor-2", "emergency-supervisor-1"),
    EscalationLevel.LEVEL_3: ("chief-supervisor-1", "senior-supervisor-1", "senior-supervisor-2"),
    EscalationLevel.CRITICAL: ("chief-supervisor-1", "chief-supervisor-2", "emergency-director-1"),
}

# Minutes before an unanswered escalation times out and moves up a level
ESCALATION_TIMEOUT_MINUTES: Dict[EscalationLevel, int] = {
    EscalationLevel.LEVEL_1: 15,
    EscalationLevel.LEVEL_2: 10,
    EscalationLevel.LEVEL_3: 8,
    EscalationLevel.CRITICAL: 5,
}

# Ladder an escalation may climb, by triage urgency
ESCALATION_LADDERS: Dict[UrgencyLevel, Tuple[EscalationLevel, ...]] = {
    UrgencyLevel.EMERGENCY: (
        EscalationLevel.LEVEL_1,
        EscalationLevel.LEVEL_2,
        EscalationLevel.LEVEL_3,
        EscalationLevel.CRITICAL,
    ),
    UrgencyLevel.URGENT: (
        EscalationLevel.LEVEL_1,
        EscalationLevel.LEVEL_2,
        EscalationLevel.LEVEL_3,
    ),
}
DEFAULT_ESCALATION_LADDER: Tuple[EscalationLevel, ...] = (
    EscalationLevel.LEVEL_1,
    EscalationLevel.LEVEL_2,
)

# Longest tolerated wait (minutes) before an episode counts as overdue
MAX_WAIT_MINUTES: Dict[UrgencyLevel, int] = {
    UrgencyLevel.EMERGENCY: 5,
    UrgencyLevel.URGENT: 30,
    UrgencyLevel.ROUTINE: 120,
}
DEFAULT_MAX_WAIT_MINUTES = 60

# Complaint phrases that mark an episode as critical regardless of score
CRITICAL_SYMPTOM_KEYWORDS: FrozenSet[str] = frozenset({
    "chest pain",
    "difficulty breathing",
    "unconscious",
    "severe bleeding",
    "stroke",
    "heart attack",
    "seizure",
    "severe trauma",
    "poisoning",
})


@dataclass(frozen=True)
class EmergencyConfig:
    """Tunable thresholds for alerting and escalation."""

    # Self-reported severity (1-10) treated as critical
    critical_severity_threshold: int = 8

    # AI triage confidence below this asks for a human second look
    ai_confidence_threshold: float = 0.7

    # Timeout warning window before an escalation expires (minutes)
    timeout_warning_minutes: int = 2

    # Queue defaults
    default_queue_limit: int = 20
    max_queue_limit: int = 100
    queue_overfetch_factor: int = 2

    critical_keywords: FrozenSet[str] = field(default_factory=lambda: CRITICAL_SYMPTOM_KEYWORDS)


@dataclass(frozen=True)
class ServiceSettings:
    """Externally injected deployment settings."""
    episode_table_name: str
    emergency_alert_topic_arn: str
    notification_topic_arn: str
    region: str = "us-east-1"
    notifications_enabled: bool = True

    @property
    def alerts_table_name(self) -> str:
        return f"{self.episode_table_name}-alerts"

    @property
    def escalations_table_name(self) -> str:
        return f"{self.episode_table_name}-escalations"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Create settings from environment variables.

        Environment variables:
            EPISODE_TABLE_NAME: Episode table (sub-tables derive from it)
            EMERGENCY_ALERT_TOPIC_ARN: SNS topic for emergency traffic
            NOTIFICATION_TOPIC_ARN: SNS topic for general notifications
            AWS_REGION: AWS region (default us-east-1)
            NOTIFICATIONS_ENABLED: Disable publishing for local runs
        """
        return cls(
            episode_table_name=os.getenv("EPISODE_TABLE_NAME", "carebridge-episodes"),
            emergency_alert_topic_arn=os.getenv("EMERGENCY_ALERT_TOPIC_ARN", ""),
            notification_topic_arn=os.getenv("NOTIFICATION_TOPIC_ARN", ""),
            region=os.getenv("AWS_REGION", "us-east-1"),
            notifications_enabled=os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true",
        )

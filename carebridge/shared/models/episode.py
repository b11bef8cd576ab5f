"""Episode domain model.

An Episode is one patient symptom-report-to-resolution lifecycle. The
record is owned by the intake subsystem; emergency components read it
and only append emergency-specific fields to it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime the way it is stored (ISO-8601, UTC)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from start to end."""
    return int((end - start).total_seconds() // 60)


class UrgencyLevel(Enum):
    """Triage urgency classification."""
    EMERGENCY = "emergency"
    URGENT = "urgent"
    ROUTINE = "routine"
    SELF_CARE = "self-care"

    @classmethod
    def parse(cls, value: Any) -> Optional["UrgencyLevel"]:
        """Parse a stored urgency value (case-insensitive), None if unknown."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        normalized = str(value).strip().lower().replace("_", "-")
        for level in cls:
            if level.value == normalized:
                return level
        return None


class InputMethod(Enum):
    """How the symptoms were captured."""
    TEXT = "text"
    VOICE = "voice"


@dataclass(frozen=True)
class Symptoms:
    """Reported symptoms."""
    primary_complaint: str = ""
    duration: str = ""
    severity: int = 0           # 1-10 self-reported
    associated_symptoms: List[str] = field(default_factory=list)
    input_method: InputMethod = InputMethod.TEXT

    @classmethod
    def from_item(cls, item: Optional[Dict[str, Any]]) -> "Symptoms":
        item = item or {}
        try:
            input_method = InputMethod(item.get("inputMethod", "text"))
        except ValueError:
            input_method = InputMethod.TEXT
        return cls(
            primary_complaint=item.get("primaryComplaint", "") or "",
            duration=item.get("duration", "") or "",
            severity=int(item.get("severity", 0) or 0),
            associated_symptoms=list(item.get("associatedSymptoms", []) or []),
            input_method=input_method,
        )

    def to_item(self) -> Dict[str, Any]:
        return {
            "primaryComplaint": self.primary_complaint,
            "duration": self.duration,
            "severity": self.severity,
            "associatedSymptoms": list(self.associated_symptoms),
            "inputMethod": self.input_method.value,
        }


@dataclass(frozen=True)
class AIAssessment:
    """AI-assisted triage output, when the AI path was used."""
    used: bool = False
    confidence: Optional[float] = None
    reasoning: Optional[str] = None

    @classmethod
    def from_item(cls, item: Optional[Dict[str, Any]]) -> "AIAssessment":
        item = item or {}
        confidence = item.get("confidence")
        return cls(
            used=bool(item.get("used", False)),
            confidence=float(confidence) if confidence is not None else None,
            reasoning=item.get("reasoning"),
        )


@dataclass(frozen=True)
class TriageAssessment:
    """Triage outcome attached to an episode by the triage engine."""
    urgency_level: Optional[UrgencyLevel] = None
    rule_based_score: Optional[float] = None
    final_score: Optional[float] = None
    ai_assessment: AIAssessment = field(default_factory=AIAssessment)

    @classmethod
    def from_item(cls, item: Optional[Dict[str, Any]]) -> Optional["TriageAssessment"]:
        if not item:
            return None
        return cls(
            urgency_level=UrgencyLevel.parse(item.get("urgencyLevel")),
            rule_based_score=item.get("ruleBasedScore"),
            final_score=item.get("finalScore"),
            ai_assessment=AIAssessment.from_item(item.get("aiAssessment")),
        )

    def to_item(self) -> Dict[str, Any]:
        return {
            "urgencyLevel": self.urgency_level.value if self.urgency_level else None,
            "ruleBasedScore": self.rule_based_score,
            "finalScore": self.final_score,
            "aiAssessment": {
                "used": self.ai_assessment.used,
                "confidence": self.ai_assessment.confidence,
                "reasoning": self.ai_assessment.reasoning,
            },
        }


@dataclass(frozen=True)
class Episode:
    """Read-only view of an episode record.

    Embedded emergency lists and snapshot fields are kept as raw items;
    the emergency service owns their interpretation.
    """
    episode_id: str
    patient_id: str
    symptoms: Symptoms
    triage: Optional[TriageAssessment]
    created_at: Optional[datetime]
    updated_at: Optional[datetime] = None
    emergency_status: Optional[str] = None
    escalation_status: Optional[str] = None
    escalation_level: Optional[str] = None
    emergency_alerts: List[Dict[str, Any]] = field(default_factory=list)
    escalations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def urgency_level(self) -> Optional[UrgencyLevel]:
        return self.triage.urgency_level if self.triage else None

    @property
    def is_emergency(self) -> bool:
        return self.urgency_level == UrgencyLevel.EMERGENCY

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Episode":
        """Build an Episode from a DynamoDB item (camelCase keys)."""
        return cls(
            episode_id=item["episodeId"],
            patient_id=item.get("patientId", ""),
            symptoms=Symptoms.from_item(item.get("symptoms")),
            triage=TriageAssessment.from_item(item.get("triage")),
            created_at=parse_timestamp(item.get("createdAt")),
            updated_at=parse_timestamp(item.get("updatedAt")),
            emergency_status=item.get("emergencyStatus"),
            escalation_status=item.get("escalationStatus"),
            escalation_level=item.get("escalationLevel"),
            emergency_alerts=list(item.get("emergencyAlerts", []) or []),
            escalations=list(item.get("escalations", []) or []),
        )

    def to_item(self) -> Dict[str, Any]:
        """Core record fields as stored by intake."""
        item = {
            "episodeId": self.episode_id,
            "patientId": self.patient_id,
            "symptoms": self.symptoms.to_item(),
            "triage": self.triage.to_item() if self.triage else None,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        return {k: v for k, v in item.items() if v is not None}

    def to_summary(self) -> Dict[str, Any]:
        """Compact JSON-safe summary carried in notification payloads."""
        return {
            "episodeId": self.episode_id,
            "patientId": self.patient_id,
            "urgencyLevel": self.urgency_level.value if self.urgency_level else None,
            "symptoms": self.symptoms.to_item(),
            "createdAt": format_timestamp(self.created_at),
        }

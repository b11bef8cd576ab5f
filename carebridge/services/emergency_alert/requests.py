"""Inbound request variants for the emergency alert API.

One frozen dataclass per route. Each declares the body fields it
requires; parse_request() picks the variant from the HTTP method and
path and validates the required fields before any engine runs.

Routes:
    POST .../alert       ProcessAlertRequest
    POST .../escalate    ProcessEscalationRequest
    POST (other)         ProcessEmergencyCaseRequest
    GET  /{episodeId}    GetEmergencyStatusRequest
    GET  (no id)         GetEmergencyQueueRequest
    PUT  .../escalate    UpdateEscalationStatusRequest
    PUT  (other)         UpdateEmergencyResponseRequest
"""
import base64
import json
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from .config import EmergencyConfig
from .errors import MethodNotAllowedError, ValidationError


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(required: Tuple[str, ...], body: Dict[str, Any]) -> None:
    """Raise ValidationError naming the route's required fields.

    The message lists every required field; `missing_fields` lists
    exactly the absent ones, in declared order.
    """
    missing = [name for name in required if _is_missing(body.get(name))]
    if not missing:
        return
    noun = "field" if len(required) == 1 else "fields"
    raise ValidationError(
        f"Missing required {noun}: {', '.join(required)}",
        missing_fields=missing,
    )


@dataclass(frozen=True)
class ProcessAlertRequest:
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("episodeId", "alertType")

    episode_id: str
    alert_type: str
    severity: str = "high"
    additional_info: Optional[Dict[str, Any]] = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ProcessAlertRequest":
        require_fields(cls.REQUIRED_FIELDS, body)
        return cls(
            episode_id=str(body["episodeId"]),
            alert_type=str(body["alertType"]),
            severity=body.get("severity") or "high",
            additional_info=body.get("additionalInfo"),
        )


@dataclass(frozen=True)
class ProcessEscalationRequest:
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("episodeId", "escalationReason")

    episode_id: str
    escalation_reason: str
    target_level: Optional[str] = None
    urgent_response: bool = False

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ProcessEscalationRequest":
        require_fields(cls.REQUIRED_FIELDS, body)
        return cls(
            episode_id=str(body["episodeId"]),
            escalation_reason=str(body["escalationReason"]),
            target_level=body.get("targetLevel"),
            urgent_response=body.get("urgentResponse") is True,
        )


@dataclass(frozen=True)
class ProcessEmergencyCaseRequest:
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("episodeId",)

    episode_id: str

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ProcessEmergencyCaseRequest":
        require_fields(cls.REQUIRED_FIELDS, body)
        return cls(episode_id=str(body["episodeId"]))


@dataclass(frozen=True)
class GetEmergencyStatusRequest:
    episode_id: str


@dataclass(frozen=True)
class GetEmergencyQueueRequest:
    supervisor_id: Optional[str] = None
    limit: int = 20

    @classmethod
    def from_query(
        cls,
        query: Dict[str, Any],
        config: EmergencyConfig,
    ) -> "GetEmergencyQueueRequest":
        raw_limit = query.get("limit")
        if _is_missing(raw_limit):
            limit = config.default_queue_limit
        else:
            try:
                limit = int(raw_limit)
            except (TypeError, ValueError):
                limit = 0
            if limit < 1:
                raise ValidationError("limit must be a positive integer")
        return cls(
            supervisor_id=query.get("supervisorId") or None,
            limit=min(limit, config.max_queue_limit),
        )


@dataclass(frozen=True)
class UpdateEmergencyResponseRequest:
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("episodeId", "supervisorId", "responseAction")

    episode_id: str
    supervisor_id: str
    response_action: str
    notes: Optional[str] = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "UpdateEmergencyResponseRequest":
        require_fields(cls.REQUIRED_FIELDS, body)
        return cls(
            episode_id=str(body["episodeId"]),
            supervisor_id=str(body["supervisorId"]),
            response_action=str(body["responseAction"]),
            notes=body.get("notes"),
        )


@dataclass(frozen=True)
class UpdateEscalationStatusRequest:
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("escalationId", "status")

    escalation_id: str
    status: str
    failure_reason: Optional[str] = None
    episode_id: Optional[str] = None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "UpdateEscalationStatusRequest":
        require_fields(cls.REQUIRED_FIELDS, body)
        return cls(
            escalation_id=str(body["escalationId"]),
            status=str(body["status"]),
            failure_reason=body.get("failureReason"),
            episode_id=body.get("episodeId"),
        )


EmergencyRequest = Union[
    ProcessAlertRequest,
    ProcessEscalationRequest,
    ProcessEmergencyCaseRequest,
    GetEmergencyStatusRequest,
    GetEmergencyQueueRequest,
    UpdateEmergencyResponseRequest,
    UpdateEscalationStatusRequest,
]


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Decode the JSON body of a proxy event.

    Raises:
        json.JSONDecodeError: Malformed JSON (reported as an internal error)
        ValidationError: Body is JSON but not an object
    """
    raw = event.get("body")
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_request(
    event: Dict[str, Any],
    config: Optional[EmergencyConfig] = None,
) -> EmergencyRequest:
    """Build the request variant for an API Gateway proxy event.

    Raises:
        MethodNotAllowedError: Method has no route
        ValidationError: Required fields missing
    """
    config = config or EmergencyConfig()
    method = (event.get("httpMethod") or "").upper()
    path = event.get("path") or ""
    path_parameters = event.get("pathParameters") or {}

    # The per-episode resource is read-only.
    if path_parameters.get("episodeId") and method != "GET":
        raise MethodNotAllowedError("Method not allowed")

    if method == "POST":
        body = parse_body(event)
        if "/alert" in path:
            return ProcessAlertRequest.from_body(body)
        if "/escalate" in path:
            return ProcessEscalationRequest.from_body(body)
        return ProcessEmergencyCaseRequest.from_body(body)

    if method == "GET":
        episode_id = path_parameters.get("episodeId")
        if episode_id:
            return GetEmergencyStatusRequest(episode_id=episode_id)
        return GetEmergencyQueueRequest.from_query(event.get("queryStringParameters") or {}, config)

    if method == "PUT":
        body = parse_body(event)
        if "/escalate" in path:
            return UpdateEscalationStatusRequest.from_body(body)
        return UpdateEmergencyResponseRequest.from_body(body)

    raise MethodNotAllowedError("Method not allowed")

"""Request Orchestrator for the emergency alert service.

Routes API Gateway proxy events to the alert and escalation engines,
composes multi-engine workflows, fires notifications and maps results
and errors to JSON envelopes.

Entry points:
    lambda_handler         API Gateway proxy events
    timeout_sweep_handler  scheduled escalation timeout sweep + digest

Error mapping:
    NotFoundError          404
    ValidationError        400 (incl. InvalidTransitionError)
    MethodNotAllowedError  405
    anything else          500, generic message, details logged only
"""
import json
import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from carebridge.shared.database import DynamoConfig, DynamoConnection
from carebridge.shared.models import format_timestamp, utc_now
from carebridge.shared.utils import configure_pii_salt_from_env, hash_pii
from .alert_service import EmergencyAlertService
from .config import EmergencyConfig, ServiceSettings
from .episode_store import EpisodeStore
from .errors import MethodNotAllowedError, NotFoundError, ValidationError, episode_not_found
from .escalation_service import EscalationProtocolService
from .notification_service import EmergencyNotificationDispatcher
from .requests import (
    GetEmergencyQueueRequest,
    GetEmergencyStatusRequest,
    ProcessAlertRequest,
    ProcessEmergencyCaseRequest,
    ProcessEscalationRequest,
    UpdateEmergencyResponseRequest,
    UpdateEscalationStatusRequest,
    parse_request,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error in emergency alert system"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token",
    "Access-Control-Allow-Methods": "GET,POST,PUT,OPTIONS",
}


def build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """API Gateway proxy response with JSON body and CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **CORS_HEADERS},
        "body": json.dumps(body, default=str),
    }


def error_response(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    return build_response(status_code, {"error": message, **extra})


class EmergencyAlertOrchestrator:
    """Dispatches parsed requests to the engines."""

    def __init__(
        self,
        store: EpisodeStore,
        alert_service: EmergencyAlertService,
        escalation_service: EscalationProtocolService,
        notifier: EmergencyNotificationDispatcher,
        config: Optional[EmergencyConfig] = None,
        health_check: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.store = store
        self.alert_service = alert_service
        self.escalation_service = escalation_service
        self.notifier = notifier
        self.config = config or EmergencyConfig()
        self._health_check = health_check
        self._routes: Dict[type, Callable[[Any], Dict[str, Any]]] = {
            ProcessAlertRequest: self.process_alert,
            ProcessEscalationRequest: self.process_escalation,
            ProcessEmergencyCaseRequest: self.process_emergency_case,
            GetEmergencyStatusRequest: self.get_emergency_status,
            GetEmergencyQueueRequest: self.get_emergency_queue,
            UpdateEmergencyResponseRequest: self.update_emergency_response,
            UpdateEscalationStatusRequest: self.update_escalation_status,
        }

        logger.info("EMERGENCY_ORCHESTRATOR_INITIALIZED")

    def readiness(self) -> Dict[str, Any]:
        """Backing-store health; healthy when no check is wired."""
        if self._health_check is None:
            return {"status": "not_configured", "healthy": True}
        return self._health_check()

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Handle one proxy event. Never raises."""
        method = event.get("httpMethod")
        path = event.get("path")
        try:
            request = parse_request(event, self.config)
            return build_response(200, self._routes[type(request)](request))

        except NotFoundError as e:
            logger.warning(
                "EMERGENCY_REQUEST_NOT_FOUND",
                extra={"method": method, "path": path, "error": str(e)}
            )
            return error_response(404, str(e))

        except ValidationError as e:
            logger.warning(
                "EMERGENCY_REQUEST_INVALID",
                extra={"method": method, "path": path, "error": str(e)}
            )
            if e.missing_fields:
                return error_response(400, str(e), missingFields=e.missing_fields)
            return error_response(400, str(e))

        except MethodNotAllowedError as e:
            return error_response(405, str(e))

        except Exception as e:
            logger.error(
                "EMERGENCY_REQUEST_FAILED",
                extra={
                    "method": method,
                    "path": path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return error_response(500, INTERNAL_ERROR_MESSAGE)

    def _notify(self, send: Callable[..., int], *args: Any) -> int:
        """Run a dispatcher send; delivery problems never fail the request."""
        try:
            return send(*args)
        except Exception as e:
            logger.error(
                "NOTIFICATION_DELIVERY_FAILED",
                extra={
                    "notification": send.__name__,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return 0

    def process_alert(self, request: ProcessAlertRequest) -> Dict[str, Any]:
        result = self.alert_service.process_emergency_alert(
            request.episode_id,
            request.alert_type,
            request.severity,
            request.additional_info,
        )
        self._notify(self.notifier.send_immediate_alert, result.episode, result.alert)

        return {
            "message": "Emergency alert processed successfully",
            "alertId": result.alert_id,
            "episodeId": request.episode_id,
            "severity": result.severity.value,
            "notificationsSent": result.notifications_sent,
            "estimatedResponseTime": result.estimated_response_time,
        }

    def process_escalation(self, request: ProcessEscalationRequest) -> Dict[str, Any]:
        result = self.escalation_service.process_escalation(
            request.episode_id,
            request.escalation_reason,
            request.target_level,
            request.urgent_response,
        )
        self._notify(self.notifier.send_escalation_alert, result.episode, result.escalation)

        return {
            "message": "Emergency escalation processed successfully",
            "escalationId": result.escalation_id,
            "episodeId": request.episode_id,
            "targetLevel": result.target_level.value,
            "assignedSupervisors": result.assigned_supervisors,
            "expectedResponseTime": result.expected_response_time,
        }

    def process_emergency_case(self, request: ProcessEmergencyCaseRequest) -> Dict[str, Any]:
        """Alert on an emergency-classified episode and escalate if needed."""
        episode = self.store.get_episode(request.episode_id)
        if episode is None:
            raise episode_not_found(request.episode_id)
        if not episode.is_emergency:
            raise ValidationError("Episode is not classified as emergency")

        logger.critical(
            "EMERGENCY_CASE_PROCESSING",
            extra={
                "episode_id": episode.episode_id,
                "patient_id_hash": hash_pii(episode.patient_id),
            }
        )

        alert = self.alert_service.process_emergency_alert(
            episode.episode_id,
            "emergency_case",
            "high",
            {
                "symptoms": episode.symptoms.to_item(),
                "triage": episode.triage.to_item() if episode.triage else None,
            },
        )
        self._notify(self.notifier.send_immediate_alert, alert.episode, alert.alert)

        body: Dict[str, Any] = {
            "message": "Emergency case processed successfully",
            "episodeId": episode.episode_id,
            "alertId": alert.alert_id,
            "notificationsSent": alert.notifications_sent,
            "estimatedResponseTime": alert.estimated_response_time,
            "escalated": False,
        }

        assessment = self.escalation_service.assess_escalation_need(episode)
        if assessment.required:
            escalation = self.escalation_service.process_escalation(
                episode.episode_id,
                assessment.reason,
                assessment.target_level,
                urgent_response=True,
            )
            self._notify(self.notifier.send_escalation_alert, escalation.episode, escalation.escalation)
            body.update({
                "escalated": True,
                "escalationId": escalation.escalation_id,
                "escalationLevel": escalation.target_level.value,
                "escalationReason": assessment.reason,
                "expectedResponseTime": escalation.expected_response_time,
            })

        return body

    def get_emergency_status(self, request: GetEmergencyStatusRequest) -> Dict[str, Any]:
        return self.alert_service.get_emergency_status(request.episode_id).to_dict()

    def get_emergency_queue(self, request: GetEmergencyQueueRequest) -> Dict[str, Any]:
        queue = self.alert_service.get_emergency_queue(request.supervisor_id, request.limit)
        body: Dict[str, Any] = {
            "queue": [item.to_dict() for item in queue],
            "totalItems": len(queue),
        }
        if request.supervisor_id:
            body["supervisorId"] = request.supervisor_id
        return body

    def update_emergency_response(self, request: UpdateEmergencyResponseRequest) -> Dict[str, Any]:
        result = self.alert_service.update_emergency_response(
            request.episode_id,
            request.supervisor_id,
            request.response_action,
            request.notes,
        )
        self._notify(self.notifier.send_response_confirmation, result.episode, result.response)

        return {
            "message": "Emergency response updated successfully",
            "episodeId": request.episode_id,
            "responseAction": request.response_action,
            "supervisorId": request.supervisor_id,
            "timestamp": format_timestamp(result.timestamp),
            "alertsUpdated": len(result.updated_alerts),
        }

    def update_escalation_status(self, request: UpdateEscalationStatusRequest) -> Dict[str, Any]:
        escalation = self.escalation_service.update_escalation_status(
            request.escalation_id,
            request.status,
            request.failure_reason,
            request.episode_id,
        )
        return {
            "message": "Escalation status updated successfully",
            "escalationId": escalation.escalation_id,
            "episodeId": escalation.episode_id,
            "status": escalation.status.value,
        }

    def run_timeout_sweep(self) -> Dict[str, Any]:
        """Sweep escalation timeouts, then publish the queue digest."""
        result = self.escalation_service.check_escalation_timeouts()
        stats = self.alert_service.get_emergency_stats()
        self._notify(self.notifier.send_emergency_status_update, stats)
        return {"sweep": result.to_dict(), "stats": stats.to_dict()}


def build_orchestrator(
    settings: ServiceSettings,
    dynamo: Optional[DynamoConnection] = None,
    sns_client: Any = None,
    config: Optional[EmergencyConfig] = None,
    clock: Callable = utc_now,
) -> EmergencyAlertOrchestrator:
    """Wire the service graph.

    Args:
        settings: Table and topic configuration
        dynamo: DynamoDB connection (built from env when omitted)
        sns_client: SNS client (created lazily when omitted)
        config: Thresholds
        clock: Shared clock for every component
    """
    config = config or EmergencyConfig()
    dynamo = dynamo or DynamoConnection(DynamoConfig.from_env())

    store = EpisodeStore.from_tables(
        dynamo.table(settings.episode_table_name),
        dynamo.table(settings.alerts_table_name),
        dynamo.table(settings.escalations_table_name),
        settings.episode_table_name,
        clock=clock,
    )
    notifier = EmergencyNotificationDispatcher(
        emergency_topic_arn=settings.emergency_alert_topic_arn,
        notification_topic_arn=settings.notification_topic_arn,
        sns_client=sns_client,
        enabled=settings.notifications_enabled,
        region=settings.region,
    )
    alert_service = EmergencyAlertService(store, config=config, clock=clock)
    escalation_service = EscalationProtocolService(
        store, notifier=notifier, config=config, clock=clock,
    )
    return EmergencyAlertOrchestrator(
        store,
        alert_service,
        escalation_service,
        notifier,
        config,
        health_check=partial(dynamo.health_check, settings.episode_table_name),
    )


_orchestrator: Optional[EmergencyAlertOrchestrator] = None


def get_orchestrator() -> EmergencyAlertOrchestrator:
    """Build the orchestrator once per execution environment."""
    global _orchestrator
    if _orchestrator is None:
        configure_pii_salt_from_env()
        _orchestrator = build_orchestrator(ServiceSettings.from_env())
    return _orchestrator


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """API Gateway entry point."""
    try:
        orchestrator = get_orchestrator()
    except Exception as e:
        logger.critical(
            "EMERGENCY_SERVICE_INIT_FAILED",
            extra={"error": str(e), "error_type": type(e).__name__}
        )
        return error_response(500, INTERNAL_ERROR_MESSAGE)
    return orchestrator.handle(event)


def timeout_sweep_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Scheduled entry point for the escalation timeout sweep."""
    return get_orchestrator().run_timeout_sweep()

"""Emergency alert HTTP handler for local runs and containers.

Translates Flask requests into API Gateway proxy events and hands them
to the same orchestrator the Lambda entry point uses, so status codes,
bodies and CORS headers are identical in both deployments.

Endpoints:
- GET  /health                   Liveness
- GET  /ready                    Readiness (orchestrator built, episode table reachable)
- POST /emergency/alert          Process an emergency alert
- POST /emergency/escalate       Process an escalation
- PUT  /emergency/escalate       Update escalation status
- POST /emergency                Process an emergency case
- GET  /emergency                Emergency queue
- GET  /emergency/<episode_id>   Emergency status
- PUT  /emergency                Record a supervisor response
"""
import logging
import os
from typing import Any, Callable, Dict, Optional

from flask import Flask, Response, jsonify, request

from .handler import EmergencyAlertOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

# Every method reaches the orchestrator so unsupported ones get the JSON 405.
EMERGENCY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


def _to_proxy_event(path_parameters: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        "httpMethod": request.method,
        "path": request.path,
        "pathParameters": path_parameters,
        "queryStringParameters": request.args.to_dict() or None,
        "headers": dict(request.headers),
        "body": request.get_data(as_text=True) or None,
        "isBase64Encoded": False,
    }


def _to_flask_response(result: Dict[str, Any]) -> Response:
    return Response(
        result["body"],
        status=result["statusCode"],
        headers=result["headers"],
    )


def create_app(
    orchestrator: Optional[EmergencyAlertOrchestrator] = None,
) -> Flask:
    """Create the Flask app.

    Args:
        orchestrator: Pre-built orchestrator; built from the environment
            on first request when omitted
    """
    app = Flask(__name__)
    provider: Callable[[], EmergencyAlertOrchestrator] = (
        (lambda: orchestrator) if orchestrator is not None else get_orchestrator
    )

    def dispatch(path_parameters: Optional[Dict[str, str]] = None) -> Response:
        event = _to_proxy_event(path_parameters)
        logger.info(
            "EMERGENCY_HTTP_REQUEST",
            extra={"method": event["httpMethod"], "path": event["path"]}
        )
        return _to_flask_response(provider().handle(event))

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "emergency-alert",
        }), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check."""
        try:
            database = provider().readiness()
        except Exception as e:
            logger.error("EMERGENCY_READY_CHECK_FAILED", extra={"error": str(e)})
            return jsonify({"status": "not_ready"}), 503
        if not database.get("healthy"):
            return jsonify({"status": "not_ready", "database": database}), 503
        return jsonify({"status": "ready", "database": database}), 200

    @app.route("/emergency", methods=EMERGENCY_METHODS, provide_automatic_options=False)
    @app.route("/emergency/alert", methods=EMERGENCY_METHODS, provide_automatic_options=False)
    @app.route("/emergency/escalate", methods=EMERGENCY_METHODS, provide_automatic_options=False)
    def emergency():
        return dispatch()

    @app.route("/emergency/<episode_id>", methods=EMERGENCY_METHODS, provide_automatic_options=False)
    def emergency_status(episode_id: str):
        return dispatch({"episodeId": episode_id})

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8004"))
    app.run(host="0.0.0.0", port=port, debug=False)

"""Tests for the Notification Dispatcher."""
import json
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from carebridge.shared.models import Episode
from carebridge.services.emergency_alert.models import (
    AlertSeverity,
    AlertStatus,
    EmergencyAlert,
    EmergencyStats,
    EscalationLevel,
    EscalationProtocol,
    EscalationStatus,
    EscalationStep,
    ResponseEvent,
)
from carebridge.services.emergency_alert.notification_service import (
    EmergencyNotificationDispatcher,
    EmergencyNotificationMessage,
    NotificationType,
    system_status,
)

EMERGENCY_TOPIC = "arn:aws:sns:us-east-1:123456789012:emergency-alerts"
NOTIFICATION_TOPIC = "arn:aws:sns:us-east-1:123456789012:notifications"
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def episode():
    return Episode.from_item({
        "episodeId": "ep-1",
        "patientId": "patient-1",
        "symptoms": {
            "primaryComplaint": "Chest pain",
            "duration": "30 minutes",
            "severity": 9,
            "associatedSymptoms": ["sweating"],
            "inputMethod": "voice",
        },
        "triage": {"urgencyLevel": "emergency", "finalScore": 95},
        "createdAt": NOW.isoformat(),
    })


def make_alert(severity=AlertSeverity.CRITICAL, supervisors=None):
    return EmergencyAlert(
        alert_id="alert-1",
        episode_id="ep-1",
        alert_type="cardiac_emergency",
        severity=severity,
        created_at=NOW,
        status=AlertStatus.ACTIVE,
        assigned_supervisors=supervisors or ["emergency-supervisor-1", "emergency-supervisor-2"],
    )


def make_escalation(urgent=False):
    return EscalationProtocol(
        escalation_id="esc-1",
        episode_id="ep-1",
        escalation_level=EscalationLevel.LEVEL_2,
        reason="Emergency wait time exceeded",
        created_at=NOW,
        status=EscalationStatus.ACTIVE,
        assigned_supervisors=["senior-supervisor-1", "senior-supervisor-2", "emergency-supervisor-1"],
        escalation_path=[
            EscalationStep(EscalationLevel.LEVEL_2, ["senior-supervisor-1"]),
            EscalationStep(EscalationLevel.LEVEL_3, ["chief-supervisor-1"]),
        ],
        timeout_minutes=5 if urgent else 10,
        urgent_response=urgent,
    )


def published(sns_client):
    return [call.kwargs for call in sns_client.publish.call_args_list]


class TestEmergencyNotificationMessage:
    """Tests for the outbound message value."""

    def test_personal_copy(self):
        message = EmergencyNotificationMessage(
            message_type=NotificationType.IMMEDIATE_ALERT,
            subject="EMERGENCY ALERT - Episode ep-1",
            payload={"episodeId": "ep-1"},
            episode_id="ep-1",
            timestamp=NOW,
        )

        personal = message.for_supervisor("emergency-supervisor-1")

        assert personal.subject == "[PERSONAL ALERT] EMERGENCY ALERT - Episode ep-1"
        assert message.supervisor_id is None
        body = json.loads(personal.to_sns_message())
        assert body["type"] == "immediate_alert"
        assert body["supervisorId"] == "emergency-supervisor-1"
        assert body["timestamp"] == NOW.isoformat()
        attributes = personal.message_attributes()
        assert attributes["notification_type"]["StringValue"] == "immediate_alert_personal"
        assert attributes["personal_alert"]["StringValue"] == "true"

    def test_subject_truncated(self):
        message = EmergencyNotificationMessage(
            message_type=NotificationType.STATUS_UPDATE,
            subject="x" * 150,
            payload={},
        )
        assert len(message.sns_subject()) == 100


class TestSendImmediateAlert:
    """Tests for new-alert fan-out."""

    def test_broadcast_and_personal_copies(self, notifier, sns_client, episode):
        delivered = notifier.send_immediate_alert(episode, make_alert())

        assert delivered == 3
        calls = published(sns_client)
        assert all(call["TopicArn"] == EMERGENCY_TOPIC for call in calls)
        assert calls[0]["Subject"] == "[CRITICAL] EMERGENCY ALERT - Episode ep-1"
        assert calls[1]["Subject"] == "[PERSONAL ALERT] [CRITICAL] EMERGENCY ALERT - Episode ep-1"
        assert calls[2]["MessageAttributes"]["supervisor_id"]["StringValue"] == "emergency-supervisor-2"

    def test_broadcast_attributes(self, notifier, sns_client, episode):
        notifier.send_immediate_alert(episode, make_alert())

        attributes = published(sns_client)[0]["MessageAttributes"]
        assert attributes["notification_type"]["StringValue"] == "immediate_alert"
        assert attributes["urgency_level"]["StringValue"] == "emergency"
        assert attributes["severity"]["StringValue"] == "critical"
        assert attributes["episode_id"]["StringValue"] == "ep-1"
        assert attributes["high_priority"]["StringValue"] == "true"
        assert "supervisor_id" not in attributes

    def test_payload(self, notifier, sns_client, episode):
        notifier.send_immediate_alert(episode, make_alert())

        body = json.loads(published(sns_client)[0]["Message"])
        assert body["alert"]["alertId"] == "alert-1"
        assert body["symptoms"]["primaryComplaint"] == "Chest pain"
        assert body["symptoms"]["inputMethod"] == "voice"
        assert body["createdAt"] == NOW.isoformat()
        assert body["requiresImmediateResponse"] is True

    @pytest.mark.parametrize("severity,prefix", [
        (AlertSeverity.HIGH, "[HIGH] "),
        (AlertSeverity.MEDIUM, ""),
    ])
    def test_subject_prefix(self, notifier, sns_client, episode, severity, prefix):
        notifier.send_immediate_alert(episode, make_alert(severity, ["emergency-supervisor-1"]))
        assert published(sns_client)[0]["Subject"] == f"{prefix}EMERGENCY ALERT - Episode ep-1"

    def test_one_failure_does_not_stop_fan_out(self, notifier, sns_client, episode, caplog):
        error = ClientError({"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "Publish")
        sns_client.publish.side_effect = [{"MessageId": "m1"}, error, {"MessageId": "m3"}]

        with caplog.at_level(logging.ERROR):
            delivered = notifier.send_immediate_alert(episode, make_alert())

        assert delivered == 2
        assert sns_client.publish.call_count == 3
        assert "NOTIFICATION_DELIVERY_FAILED" in caplog.messages

    def test_all_failures_swallowed(self, notifier, sns_client, episode):
        sns_client.publish.side_effect = RuntimeError("network down")
        assert notifier.send_immediate_alert(episode, make_alert()) == 0


class TestSendEscalationAlert:
    """Tests for escalation fan-out."""

    def test_subject_and_payload(self, notifier, sns_client, episode):
        delivered = notifier.send_escalation_alert(episode, make_escalation())

        assert delivered == 4
        call = published(sns_client)[0]
        assert call["Subject"] == "ESCALATION REQUIRED - level-2 - Episode ep-1"
        body = json.loads(call["Message"])
        assert body["escalationLevel"] == "level-2"
        assert [step["level"] for step in body["escalationPath"]] == ["level-2", "level-3"]
        assert body["expectedResponseTime"] == 10

    def test_urgent_prefix(self, notifier, sns_client, episode):
        notifier.send_escalation_alert(episode, make_escalation(urgent=True))
        assert published(sns_client)[0]["Subject"].startswith("[URGENT] ESCALATION REQUIRED")


class TestSendResponseConfirmation:
    """Tests for response confirmations."""

    def test_general_topic_single_message(self, notifier, sns_client, episode):
        response = ResponseEvent("emergency-supervisor-1", "acknowledge", NOW, notes="On it")

        delivered = notifier.send_response_confirmation(episode, response)

        assert delivered == 1
        call = published(sns_client)[0]
        assert call["TopicArn"] == NOTIFICATION_TOPIC
        assert call["Subject"] == "Emergency Response Confirmed - Episode ep-1"
        body = json.loads(call["Message"])
        assert body["response"]["responseAction"] == "acknowledge"
        assert body["status"] == "confirmed"


class TestSendTimeoutWarning:
    """Tests for timeout warnings."""

    @pytest.mark.parametrize("remaining,imminent", [(1, True), (2, True), (3, False)])
    def test_imminent_flag(self, notifier, sns_client, episode, remaining, imminent):
        notifier.send_timeout_warning(episode, make_escalation(), remaining)

        body = json.loads(published(sns_client)[0]["Message"])
        assert body["minutesRemaining"] == remaining
        assert body["escalationImminent"] is imminent

    def test_fans_out_to_pool(self, notifier, sns_client, episode):
        assert notifier.send_timeout_warning(episode, make_escalation(), 2) == 4


class TestSendEmergencyStatusUpdate:
    """Tests for the periodic digest."""

    def test_digest(self, notifier, sns_client):
        stats = EmergencyStats(active_emergencies=3, critical_count=1,
                               average_response_time=5.7, overdue_count=1)

        assert notifier.send_emergency_status_update(stats) == 1

        call = published(sns_client)[0]
        assert call["TopicArn"] == NOTIFICATION_TOPIC
        assert call["Subject"] == "Emergency System Status - ACTIVE"
        body = json.loads(call["Message"])
        assert body["activeEmergencies"] == 3
        assert body["systemStatus"] == "ACTIVE"

    @pytest.mark.parametrize("active,critical,expected", [
        (0, 0, "NORMAL"),
        (2, 0, "ACTIVE"),
        (11, 0, "HIGH LOAD"),
        (8, 6, "CRITICAL LOAD"),
    ])
    def test_system_status(self, active, critical, expected):
        stats = EmergencyStats(active, critical, 0.0, 0)
        assert system_status(stats) == expected


class TestDisabledDispatcher:
    """Tests for local runs with publishing off."""

    def test_nothing_published(self, episode, caplog):
        client = MagicMock()
        dispatcher = EmergencyNotificationDispatcher(
            EMERGENCY_TOPIC, NOTIFICATION_TOPIC, sns_client=client, enabled=False,
        )

        with caplog.at_level(logging.INFO):
            delivered = dispatcher.send_immediate_alert(episode, make_alert())

        assert delivered == 0
        client.publish.assert_not_called()
        assert "NOTIFICATION_SKIPPED" in caplog.messages

    def test_no_client_created(self, monkeypatch):
        import boto3
        factory = MagicMock()
        monkeypatch.setattr(boto3, "client", factory)

        dispatcher = EmergencyNotificationDispatcher(EMERGENCY_TOPIC, NOTIFICATION_TOPIC, enabled=False)

        assert dispatcher.sns_client is None
        factory.assert_not_called()

    def test_lazy_client(self, monkeypatch):
        import boto3
        factory = MagicMock()
        monkeypatch.setattr(boto3, "client", factory)

        dispatcher = EmergencyNotificationDispatcher(
            EMERGENCY_TOPIC, NOTIFICATION_TOPIC, region="eu-west-1",
        )
        factory.assert_not_called()

        assert dispatcher.sns_client is factory.return_value
        factory.assert_called_once_with("sns", region_name="eu-west-1")

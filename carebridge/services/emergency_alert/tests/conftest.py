"""Shared fixtures for emergency alert tests.

FakeTable is an in-memory stand-in for a boto3 DynamoDB Table. It honours
the subset of the API the repositories use: get_item, put_item,
update_item with SET clauses (including list_append/if_not_exists) and
query by partition key on the table or a GSI.
"""
import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from carebridge.shared.database import DynamoConfig, DynamoConnection
from carebridge.shared.utils import configure_pii_salt
from carebridge.services.emergency_alert.alert_service import EmergencyAlertService
from carebridge.services.emergency_alert.config import ServiceSettings
from carebridge.services.emergency_alert.episode_store import EpisodeStore
from carebridge.services.emergency_alert.escalation_service import EscalationProtocolService
from carebridge.services.emergency_alert.handler import build_orchestrator
from carebridge.services.emergency_alert.notification_service import EmergencyNotificationDispatcher

EPISODE_TABLE = "carebridge-episodes"
START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _split_top_level(expression: str) -> List[str]:
    parts, depth, current = [], 0, ""
    for char in expression:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += char
    if current.strip():
        parts.append(current.strip())
    return parts


class FakeTable:
    """In-memory DynamoDB table double."""

    def __init__(self, name: str, key: str, indexes: Optional[Dict[str, Optional[str]]] = None):
        """
        Args:
            name: Table name
            key: Partition key attribute
            indexes: GSI name -> sort key attribute (or None)
        """
        self.name = name
        self.key = key
        self.indexes = indexes or {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.missing = False
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.missing:
            raise ClientError(
                {"Error": {"Code": "ResourceNotFoundException", "Message": "Requested resource not found"}},
                operation,
            )

    @property
    def table_status(self) -> str:
        self._check("DescribeTable")
        return "ACTIVE"

    def get_item(self, Key):
        self._check("GetItem")
        item = self.items.get(Key[self.key])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, Item):
        self._check("PutItem")
        self.items[Item[self.key]] = copy.deepcopy(Item)
        return {}

    def update_item(self, Key, UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues):
        self._check("UpdateItem")
        assert UpdateExpression.startswith("SET ")
        item = self.items.setdefault(Key[self.key], dict(Key))
        names, values = ExpressionAttributeNames, ExpressionAttributeValues

        for clause in _split_top_level(UpdateExpression[len("SET "):]):
            target, expression = (part.strip() for part in clause.split("=", 1))
            attribute = names[target]
            if expression.startswith("list_append("):
                inner = expression[len("list_append("):-1]
                first, second = _split_top_level(inner)
                name_ref, default_ref = _split_top_level(first[len("if_not_exists("):-1])
                existing = item.get(names[name_ref], values[default_ref])
                item[attribute] = list(existing) + copy.deepcopy(values[second])
            else:
                item[attribute] = copy.deepcopy(values[expression])
        return {}

    def query(self, KeyConditionExpression, ExpressionAttributeNames, ExpressionAttributeValues,
              ScanIndexForward=True, IndexName=None, Limit=None, ExclusiveStartKey=None):
        self._check("Query")
        if IndexName is not None and IndexName not in self.indexes:
            raise ClientError(
                {"Error": {"Code": "ValidationException", "Message": "Unknown index"}},
                "Query",
            )
        attribute = ExpressionAttributeNames["#pk"]
        value = ExpressionAttributeValues[":pk"]
        matches = [copy.deepcopy(i) for i in self.items.values() if i.get(attribute) == value]

        sort_key = self.indexes.get(IndexName) if IndexName else None
        if sort_key:
            matches.sort(key=lambda i: str(i.get(sort_key, "")), reverse=not ScanIndexForward)

        offset = ExclusiveStartKey["_offset"] if ExclusiveStartKey else 0
        page = matches[offset:]
        response: Dict[str, Any] = {}
        if Limit is not None and len(page) > Limit:
            page = page[:Limit]
            response["LastEvaluatedKey"] = {"_offset": offset + Limit}
        response["Items"] = page
        return response


class FakeDynamoResource:
    """Hands out FakeTables by name, like boto3's DynamoDB resource."""

    def __init__(self, tables: Dict[str, FakeTable]):
        self.tables = tables

    def Table(self, name):
        return self.tables[name]


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def episode_table():
    return FakeTable(EPISODE_TABLE, "episodeId", {
        "EmergencyStatusIndex": "emergencyFlaggedAt",
        "EscalationStatusIndex": "escalationFlaggedAt",
    })


@pytest.fixture
def alerts_table():
    return FakeTable(f"{EPISODE_TABLE}-alerts", "alertId", {
        "EpisodeIndex": "createdAt",
        "StatusIndex": "createdAt",
    })


@pytest.fixture
def escalations_table():
    return FakeTable(f"{EPISODE_TABLE}-escalations", "escalationId", {
        "EpisodeIndex": "createdAt",
        "StatusIndex": "createdAt",
    })


@pytest.fixture
def missing_subtables(alerts_table, escalations_table):
    """Simulate a deployment without the dedicated sub-tables."""
    alerts_table.missing = True
    escalations_table.missing = True


@pytest.fixture
def store(episode_table, alerts_table, escalations_table, clock):
    return EpisodeStore.from_tables(
        episode_table, alerts_table, escalations_table, EPISODE_TABLE, clock=clock,
    )


@pytest.fixture
def seed_episode(episode_table, clock):
    """Factory that writes an intake-owned episode record."""

    def seed(
        episode_id: str = "ep-1",
        urgency: Optional[str] = "emergency",
        severity: int = 5,
        complaint: str = "Dizziness",
        associated: Optional[List[str]] = None,
        created_minutes_ago: float = 0,
        ai_confidence: Optional[float] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        item = {
            "episodeId": episode_id,
            "patientId": f"patient-{episode_id}",
            "symptoms": {
                "primaryComplaint": complaint,
                "duration": "1 hour",
                "severity": severity,
                "associatedSymptoms": associated or [],
                "inputMethod": "text",
            },
            "createdAt": (clock.now - timedelta(minutes=created_minutes_ago)).isoformat(),
        }
        if urgency is not None:
            item["triage"] = {
                "urgencyLevel": urgency,
                "ruleBasedScore": 80,
                "finalScore": 80,
                "aiAssessment": {
                    "used": ai_confidence is not None,
                    "confidence": ai_confidence,
                },
            }
        item.update(extra)
        episode_table.items[episode_id] = copy.deepcopy(item)
        return item

    return seed


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def sns_client():
    client = MagicMock()
    client.publish.return_value = {"MessageId": "msg-1"}
    return client


@pytest.fixture
def notifier(sns_client):
    return EmergencyNotificationDispatcher(
        emergency_topic_arn="arn:aws:sns:us-east-1:123456789012:emergency-alerts",
        notification_topic_arn="arn:aws:sns:us-east-1:123456789012:notifications",
        sns_client=sns_client,
    )


@pytest.fixture
def alert_service(store, clock, id_factory):
    return EmergencyAlertService(store, clock=clock, id_factory=id_factory)


@pytest.fixture
def escalation_service(store, notifier, clock, id_factory):
    return EscalationProtocolService(store, notifier=notifier, clock=clock, id_factory=id_factory)


@pytest.fixture
def settings():
    return ServiceSettings(
        episode_table_name=EPISODE_TABLE,
        emergency_alert_topic_arn="arn:aws:sns:us-east-1:123456789012:emergency-alerts",
        notification_topic_arn="arn:aws:sns:us-east-1:123456789012:notifications",
    )


@pytest.fixture
def orchestrator(settings, episode_table, alerts_table, escalations_table, sns_client, clock):
    resource = FakeDynamoResource({
        table.name: table for table in (episode_table, alerts_table, escalations_table)
    })
    return build_orchestrator(
        settings,
        dynamo=DynamoConnection(DynamoConfig(), resource=resource),
        sns_client=sns_client,
        clock=clock,
    )


@pytest.fixture
def make_event():
    """Factory for API Gateway proxy events."""

    def make(method: str, path: str = "/emergency", body: Any = None,
             path_parameters=None, query=None) -> Dict[str, Any]:
        import json
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)
        return {
            "httpMethod": method,
            "path": path,
            "pathParameters": path_parameters,
            "queryStringParameters": query,
            "body": body,
        }

    return make

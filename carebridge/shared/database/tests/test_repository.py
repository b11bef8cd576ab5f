"""Tests for base repository pattern."""
import pytest
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from carebridge.shared.database.repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    build_set_expression,
    from_dynamo,
    to_dynamo,
)


@dataclass
class Sample:
    """Entity used by the repository tests."""
    id: str
    name: str
    score: float


class SampleRepository(BaseRepository[Sample]):
    """Concrete repository for testing."""

    def _item_to_entity(self, item: Dict[str, Any]) -> Sample:
        return Sample(id=item["id"], name=item["name"], score=item["score"])

    def _entity_to_item(self, entity: Sample) -> Dict[str, Any]:
        return {"id": entity.id, "name": entity.name, "score": entity.score}


def client_error(code: str = "ResourceNotFoundException") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "Operation")


@pytest.fixture
def table():
    return MagicMock()


@pytest.fixture
def repository(table):
    return SampleRepository(table, "samples", key_attribute="id")


class TestRepositoryExceptions:
    """Tests for repository exception classes."""

    def test_repository_error(self):
        error = RepositoryError("Test error")
        assert str(error) == "Test error"

    def test_not_found_error(self):
        error = NotFoundError("Entity not found")
        assert isinstance(error, RepositoryError)


class TestValueConversion:
    """Tests for DynamoDB value conversion."""

    def test_floats_become_decimal(self):
        assert to_dynamo({"score": 0.5}) == {"score": Decimal("0.5")}

    def test_none_dropped_from_maps(self):
        assert to_dynamo({"a": 1, "b": None}) == {"a": 1}

    def test_bool_untouched(self):
        assert to_dynamo(True) is True

    def test_nested_lists(self):
        assert to_dynamo([{"x": 1.5}]) == [{"x": Decimal("1.5")}]

    def test_decimal_back_to_int_or_float(self):
        assert from_dynamo(Decimal("3")) == 3
        assert isinstance(from_dynamo(Decimal("3")), int)
        assert from_dynamo(Decimal("0.25")) == 0.25

    def test_from_dynamo_nested(self):
        assert from_dynamo({"a": [Decimal("1"), {"b": Decimal("2.5")}]}) == {"a": [1, {"b": 2.5}]}


class TestBuildSetExpression:
    """Tests for SET clause construction."""

    def test_placeholders(self):
        clauses, names, values = build_set_expression({"status": "active", "score": 1.5})
        assert clauses == ["#f0 = :f0", "#f1 = :f1"]
        assert names == {"#f0": "status", "#f1": "score"}
        assert values == {":f0": "active", ":f1": Decimal("1.5")}

    def test_custom_prefix(self):
        clauses, names, _ = build_set_expression({"a": 1}, prefix="s")
        assert clauses == ["#s0 = :s0"]
        assert names == {"#s0": "a"}


class TestBaseRepository:
    """Tests for BaseRepository class."""

    def test_initialization(self, repository):
        assert repository.table_name == "samples"
        assert repository.key_attribute == "id"

    def test_find_by_id(self, repository, table):
        table.get_item.return_value = {"Item": {"id": "s1", "name": "one", "score": Decimal("0.5")}}

        entity = repository.find_by_id("s1")

        table.get_item.assert_called_once_with(Key={"id": "s1"})
        assert entity == Sample(id="s1", name="one", score=0.5)

    def test_find_by_id_missing_returns_none(self, repository, table):
        table.get_item.return_value = {}
        assert repository.find_by_id("nope") is None

    def test_save_converts_item(self, repository, table):
        repository.save(Sample(id="s1", name="one", score=0.5))
        table.put_item.assert_called_once_with(
            Item={"id": "s1", "name": "one", "score": Decimal("0.5")}
        )

    def test_update_fields(self, repository, table):
        repository.update_fields("s1", {"name": "two"})

        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"id": "s1"}
        assert kwargs["UpdateExpression"] == "SET #f0 = :f0"
        assert kwargs["ExpressionAttributeNames"] == {"#f0": "name"}
        assert kwargs["ExpressionAttributeValues"] == {":f0": "two"}

    def test_update_fields_noop_when_empty(self, repository, table):
        repository.update_fields("s1", {})
        table.update_item.assert_not_called()

    def test_append_to_list(self, repository, table):
        repository.append_to_list("s1", "history", [{"v": 1}], {"name": "x"})

        kwargs = table.update_item.call_args.kwargs
        assert kwargs["UpdateExpression"] == (
            "SET #list = list_append(if_not_exists(#list, :empty), :items), #f0 = :f0"
        )
        assert kwargs["ExpressionAttributeNames"] == {"#f0": "name", "#list": "history"}
        assert kwargs["ExpressionAttributeValues"][":items"] == [{"v": 1}]
        assert kwargs["ExpressionAttributeValues"][":empty"] == []

    def test_query_index(self, repository, table):
        table.query.return_value = {
            "Items": [{"id": "s1", "name": "one", "score": Decimal("1")}]
        }

        entities = repository.query_index("NameIndex", "name", "one", limit=5, newest_first=True)

        kwargs = table.query.call_args.kwargs
        assert kwargs["IndexName"] == "NameIndex"
        assert kwargs["KeyConditionExpression"] == "#pk = :pk"
        assert kwargs["ExpressionAttributeNames"] == {"#pk": "name"}
        assert kwargs["ExpressionAttributeValues"] == {":pk": "one"}
        assert kwargs["ScanIndexForward"] is False
        assert kwargs["Limit"] == 5
        assert entities == [Sample(id="s1", name="one", score=1)]

    def test_query_index_follows_pagination(self, repository, table):
        table.query.side_effect = [
            {"Items": [{"id": "s1", "name": "a", "score": 1}], "LastEvaluatedKey": {"id": "s1"}},
            {"Items": [{"id": "s2", "name": "a", "score": 2}]},
        ]

        entities = repository.query_index(None, "name", "a")

        assert [e.id for e in entities] == ["s1", "s2"]
        assert table.query.call_count == 2
        assert table.query.call_args.kwargs["ExclusiveStartKey"] == {"id": "s1"}
        assert "IndexName" not in table.query.call_args.kwargs

    def test_query_index_stops_at_limit(self, repository, table):
        table.query.return_value = {
            "Items": [{"id": "s1", "name": "a", "score": 1}],
            "LastEvaluatedKey": {"id": "s1"},
        }

        entities = repository.query_index(None, "name", "a", limit=1)

        assert len(entities) == 1
        table.query.assert_called_once()

    def test_client_error_wrapped(self, repository, table):
        table.put_item.side_effect = client_error()

        with pytest.raises(RepositoryError) as exc_info:
            repository.save(Sample(id="s1", name="one", score=0.5))

        assert "put_item on samples failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ClientError)

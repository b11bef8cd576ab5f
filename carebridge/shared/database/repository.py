"""Base repository pattern for DynamoDB tables.

Provides the common item operations shared by every table-backed
repository: point reads, puts, SET updates, list appends and index
queries. botocore failures are translated into RepositoryError so that
callers never depend on AWS exception types.
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


def to_dynamo(value: Any) -> Any:
    """Convert a Python value into a DynamoDB-safe value (floats -> Decimal)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB values back into plain Python (Decimal -> int/float)."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def build_set_expression(
    fields: Dict[str, Any],
    prefix: str = "f",
) -> Tuple[List[str], Dict[str, str], Dict[str, Any]]:
    """Build SET clauses with placeholder names and values.

    Args:
        fields: Attribute name to new value
        prefix: Placeholder prefix (keeps clauses from different builders apart)

    Returns:
        (clauses, expression attribute names, expression attribute values)
    """
    clauses = []
    names = {}
    values = {}
    for index, (attribute, value) in enumerate(fields.items()):
        name_key = f"#{prefix}{index}"
        value_key = f":{prefix}{index}"
        clauses.append(f"{name_key} = {value_key}")
        names[name_key] = attribute
        values[value_key] = to_dynamo(value)
    return clauses, names, values


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common DynamoDB operations.

    Subclasses implement entity-specific conversion while inheriting:
    - Table handle management
    - Error translation
    - Logging patterns
    """

    def __init__(
        self,
        table: Any,
        table_name: str,
        key_attribute: str,
    ):
        """Initialize repository.

        Args:
            table: boto3 Table resource (or compatible double)
            table_name: Name of the DynamoDB table
            key_attribute: Partition key attribute name
        """
        self.table = table
        self.table_name = table_name
        self.key_attribute = key_attribute

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name, "key_attribute": key_attribute}
        )

    @abstractmethod
    def _item_to_entity(self, item: Dict[str, Any]) -> T:
        """Convert a DynamoDB item to an entity."""
        pass

    @abstractmethod
    def _entity_to_item(self, entity: T) -> Dict[str, Any]:
        """Convert an entity to a DynamoDB item."""
        pass

    def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        """Invoke a table operation, translating botocore failures."""
        try:
            return getattr(self.table, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "DYNAMO_OPERATION_FAILED",
                extra={
                    "table_name": self.table_name,
                    "operation": operation,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise RepositoryError(f"{operation} on {self.table_name} failed: {e}") from e

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by partition key.

        Returns:
            Entity if found, None otherwise
        """
        response = self._call("get_item", Key={self.key_attribute: entity_id})
        item = response.get("Item")
        if item is None:
            return None
        return self._item_to_entity(from_dynamo(item))

    def save(self, entity: T) -> T:
        """Put the entity (insert or replace)."""
        self._call("put_item", Item=to_dynamo(self._entity_to_item(entity)))
        return entity

    def update_fields(self, entity_id: str, fields: Dict[str, Any]) -> None:
        """SET the given attributes on one item."""
        if not fields:
            return
        clauses, names, values = build_set_expression(fields)
        self._call(
            "update_item",
            Key={self.key_attribute: entity_id},
            UpdateExpression="SET " + ", ".join(clauses),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    def append_to_list(
        self,
        entity_id: str,
        attribute: str,
        items: List[Any],
        fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append items to a list attribute, creating the list if absent.

        Args:
            entity_id: Partition key value
            attribute: List-valued attribute name
            items: Items to append
            fields: Extra attributes to SET in the same write
        """
        clauses, names, values = build_set_expression(fields or {})
        names["#list"] = attribute
        values[":items"] = to_dynamo(list(items))
        values[":empty"] = []
        clauses.insert(0, "#list = list_append(if_not_exists(#list, :empty), :items)")
        self._call(
            "update_item",
            Key={self.key_attribute: entity_id},
            UpdateExpression="SET " + ", ".join(clauses),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    def query_index(
        self,
        index_name: Optional[str],
        key_attribute: str,
        key_value: Any,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[T]:
        """Query a table or index by partition key.

        Follows pagination until `limit` items are collected (or the
        index is exhausted when no limit is given).

        Args:
            index_name: GSI name, or None for the base table
            key_attribute: Partition key attribute of the index
            key_value: Partition key value
            limit: Maximum entities to return
            newest_first: Sort descending on the index sort key

        Returns:
            List of entities
        """
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": key_attribute},
            "ExpressionAttributeValues": {":pk": to_dynamo(key_value)},
            "ScanIndexForward": not newest_first,
        }
        if index_name:
            kwargs["IndexName"] = index_name

        entities: List[T] = []
        while True:
            if limit is not None:
                kwargs["Limit"] = limit - len(entities)
            response = self._call("query", **kwargs)
            for item in response.get("Items", []):
                entities.append(self._item_to_entity(from_dynamo(item)))

            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit is not None and len(entities) >= limit):
                break
            kwargs["ExclusiveStartKey"] = last_key

        return entities

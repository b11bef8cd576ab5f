"""DynamoDB access for CareBridge services.

Provides connection management and the repository base class used by
every table-backed store.
"""

from .connection import (
    DynamoConfig,
    DynamoConnection,
)
from .repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    build_set_expression,
    from_dynamo,
    to_dynamo,
)

__all__ = [
    "DynamoConfig",
    "DynamoConnection",
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "build_set_expression",
    "from_dynamo",
    "to_dynamo",
]

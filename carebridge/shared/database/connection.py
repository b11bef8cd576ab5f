"""DynamoDB connection management for CareBridge services.

Manages the boto3 DynamoDB resource with:
- Lazy creation on first use (keeps Lambda cold starts cheap)
- Table handle caching
- Health checks behind the /ready endpoint
- Local endpoint override for DynamoDB Local
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DynamoConfig:
    """DynamoDB connection configuration."""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    connect_timeout: int = 5
    read_timeout: int = 10
    max_attempts: int = 3

    @classmethod
    def from_env(cls) -> "DynamoConfig":
        """Create config from environment variables.

        Environment variables:
            AWS_REGION: AWS region (default us-east-1)
            DYNAMODB_ENDPOINT_URL: Endpoint override for DynamoDB Local
            DYNAMODB_CONNECT_TIMEOUT: Connect timeout seconds (default 5)
            DYNAMODB_READ_TIMEOUT: Read timeout seconds (default 10)
            DYNAMODB_MAX_ATTEMPTS: Retry attempts (default 3)
        """
        return cls(
            region=os.getenv("AWS_REGION", "us-east-1"),
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL") or None,
            connect_timeout=int(os.getenv("DYNAMODB_CONNECT_TIMEOUT", "5")),
            read_timeout=int(os.getenv("DYNAMODB_READ_TIMEOUT", "10")),
            max_attempts=int(os.getenv("DYNAMODB_MAX_ATTEMPTS", "3")),
        )


class DynamoConnection:
    """Owns the boto3 DynamoDB resource and hands out table handles.

    One instance per Lambda execution environment; services receive it
    (or the tables it produces) through their constructors.
    """

    def __init__(self, config: DynamoConfig, resource: Any = None):
        """Initialize connection.

        Args:
            config: DynamoDB configuration
            resource: Pre-built boto3 resource (injected for testing)
        """
        self.config = config
        self._resource = resource
        self._tables: Dict[str, Any] = {}

        logger.info(
            "DYNAMO_CONNECTION_CREATED",
            extra={
                "region": config.region,
                "endpoint_url": config.endpoint_url,
            }
        )

    @property
    def resource(self):
        """Lazy initialization of the DynamoDB resource."""
        if self._resource is None:
            import boto3
            from botocore.config import Config

            self._resource = boto3.resource(
                "dynamodb",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url,
                config=Config(
                    connect_timeout=self.config.connect_timeout,
                    read_timeout=self.config.read_timeout,
                    retries={"max_attempts": self.config.max_attempts, "mode": "standard"},
                ),
            )
            logger.info(
                "DYNAMO_RESOURCE_INITIALIZED",
                extra={"region": self.config.region}
            )
        return self._resource

    def table(self, table_name: str):
        """Get a (cached) table handle.

        Args:
            table_name: DynamoDB table name

        Returns:
            boto3 Table resource
        """
        if table_name not in self._tables:
            self._tables[table_name] = self.resource.Table(table_name)
        return self._tables[table_name]

    def health_check(self, table_name: str) -> Dict[str, Any]:
        """Check that a table is reachable.

        Args:
            table_name: Table to describe

        Returns:
            Dictionary with health status
        """
        try:
            status = self.table(table_name).table_status
            return {
                "status": "connected",
                "healthy": status == "ACTIVE",
                "table": table_name,
                "table_status": status,
            }
        except Exception as e:
            logger.error(
                "DYNAMO_HEALTH_CHECK_FAILED",
                extra={"table": table_name, "error": str(e)}
            )
            return {
                "status": "error",
                "healthy": False,
                "table": table_name,
                "error": str(e),
            }

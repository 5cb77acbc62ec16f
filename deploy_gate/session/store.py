"""Session store adapters.

The coordinator writes sessions through the SessionStore interface. The
DynamoDB implementation is used in pipelines; the in-memory one backs
development runs and tests.
"""

import asyncio
from typing import TYPE_CHECKING, Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from deploy_gate.errors import StoreError, StoreKeyError, StoreWriteError
from deploy_gate.session.models import SessionRecord

if TYPE_CHECKING:
    from deploy_gate.config import Settings

logger = structlog.get_logger(__name__)

# Fields the gate is allowed to change after creation.
UPDATABLE_FIELDS = frozenset({"approved", "rejected", "first_approver", "second_approver"})

_CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def _check_field(field_name: str) -> None:
    if field_name not in UPDATABLE_FIELDS:
        raise ValueError(
            f"Field {field_name!r} cannot be updated; "
            f"expected one of {sorted(UPDATABLE_FIELDS)}"
        )


class SessionStore:
    """Abstract base class for session persistence."""

    async def create_session(self, record: SessionRecord) -> None:
        """Write a new session record."""
        raise NotImplementedError

    async def update_field(self, deploy_id: str, field_name: str, value: str) -> None:
        """Set a single string field on an existing record."""
        raise NotImplementedError

    async def get_session(self, deploy_id: str) -> SessionRecord | None:
        """Read a session record."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release store resources."""
        return None


class InMemorySessionStore(SessionStore):
    """In-memory persistence for development and testing."""

    def __init__(self) -> None:
        """Initialize in-memory storage."""
        self._items: dict[str, dict[str, dict[str, str]]] = {}

    async def create_session(self, record: SessionRecord) -> None:
        """Write a new session record."""
        if record.deploy_id in self._items:
            raise StoreWriteError(
                "Session already exists",
                deploy_id=record.deploy_id,
                operation="create_session",
            )
        self._items[record.deploy_id] = record.to_item()

    async def update_field(self, deploy_id: str, field_name: str, value: str) -> None:
        """Set a single string field on an existing record."""
        _check_field(field_name)
        item = self._items.get(deploy_id)
        if item is None:
            raise StoreKeyError(
                "Unknown deployment session",
                deploy_id=deploy_id,
                operation="update_field",
                details={"field": field_name},
            )
        item[field_name] = {"S": value}

    async def get_session(self, deploy_id: str) -> SessionRecord | None:
        """Read a session record."""
        item = self._items.get(deploy_id)
        if item is None:
            return None
        return SessionRecord.from_item(item)


class DynamoDBSessionStore(SessionStore):
    """DynamoDB persistence for pipeline runs.

    Records are keyed by ``deploy_id``. boto3 is synchronous, so every
    call runs in a worker thread.
    """

    def __init__(self, table_name: str, client: Any) -> None:
        """Initialize DynamoDB persistence.

        Args:
            table_name: Table holding session records.
            client: boto3 DynamoDB client.
        """
        self.table_name = table_name
        self._client = client
        self._logger = logger.bind(component="dynamodb_store", table=table_name)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DynamoDBSessionStore":
        """Create a store with a client built from gate settings."""
        import boto3

        client = boto3.client(
            "dynamodb",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key,
            aws_secret_access_key=settings.aws_secret_key,
            endpoint_url=settings.dynamodb_endpoint_url,
        )
        return cls(settings.dynamodb_table, client)

    async def create_session(self, record: SessionRecord) -> None:
        """Write a new session record.

        Raises:
            StoreWriteError: If the write fails or the deploy_id already exists.
        """
        try:
            await asyncio.to_thread(
                self._client.put_item,
                TableName=self.table_name,
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(deploy_id)",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == _CONDITIONAL_CHECK_FAILED:
                message = "Session already exists"
            else:
                message = "Store rejected the write"
            raise StoreWriteError(
                message,
                deploy_id=record.deploy_id,
                operation="create_session",
                details={"code": code, "error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise StoreWriteError(
                "Store unreachable",
                deploy_id=record.deploy_id,
                operation="create_session",
                details={"error": str(e)},
            ) from e

        self._logger.debug("session_put", deploy_id=record.deploy_id)

    async def update_field(self, deploy_id: str, field_name: str, value: str) -> None:
        """Set a single string field on an existing record.

        Raises:
            StoreKeyError: If no record exists for deploy_id.
            StoreWriteError: On any other store failure.
        """
        _check_field(field_name)
        try:
            response = await asyncio.to_thread(
                self._client.update_item,
                TableName=self.table_name,
                Key={"deploy_id": {"S": deploy_id}},
                UpdateExpression="SET #field = :value",
                ConditionExpression="attribute_exists(deploy_id)",
                ExpressionAttributeNames={"#field": field_name},
                ExpressionAttributeValues={":value": {"S": value}},
                ReturnValues="UPDATED_NEW",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == _CONDITIONAL_CHECK_FAILED:
                raise StoreKeyError(
                    "Unknown deployment session",
                    deploy_id=deploy_id,
                    operation="update_field",
                    details={"field": field_name},
                ) from e
            raise StoreWriteError(
                "Store rejected the update",
                deploy_id=deploy_id,
                operation="update_field",
                details={"field": field_name, "code": code, "error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise StoreWriteError(
                "Store unreachable",
                deploy_id=deploy_id,
                operation="update_field",
                details={"field": field_name, "error": str(e)},
            ) from e

        self._logger.debug(
            "session_field_updated",
            deploy_id=deploy_id,
            field=field_name,
            attributes=response.get("Attributes", {}),
        )

    async def get_session(self, deploy_id: str) -> SessionRecord | None:
        """Read a session record.

        Raises:
            StoreError: If the store cannot be read.
        """
        try:
            response = await asyncio.to_thread(
                self._client.get_item,
                TableName=self.table_name,
                Key={"deploy_id": {"S": deploy_id}},
                ConsistentRead=True,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise StoreError(
                "Store rejected the read",
                deploy_id=deploy_id,
                operation="get_session",
                details={"code": code, "error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                "Store unreachable",
                deploy_id=deploy_id,
                operation="get_session",
                details={"error": str(e)},
            ) from e

        item = response.get("Item")
        if item is None:
            return None
        return SessionRecord.from_item(item)

    async def close(self) -> None:
        """Close the underlying HTTP connections."""
        close = getattr(self._client, "close", None)
        if close is not None:
            await asyncio.to_thread(close)

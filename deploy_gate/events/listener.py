"""Decision listener on the Redis pub/sub transport.

Each deployment session has its own channel, named exactly by its
deploy_id. The listener subscribes to that channel, decodes incoming
messages and resolves a single-slot future with the first valid decision
for the session. The subscription is torn down once the wait resolves.

Example:
    listener = DecisionListener(create_redis_client(settings))
    await listener.connect()
    event = await listener.await_decision(deploy_id)
    await listener.close()
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from deploy_gate.errors import (
    DecisionTimeoutError,
    DeployGateError,
    ProtocolError,
    TransportConnectError,
    TransportSubscribeError,
)
from deploy_gate.session.models import DecisionEvent

if TYPE_CHECKING:
    from deploy_gate.config import Settings

logger = structlog.get_logger(__name__)


def create_redis_client(settings: "Settings") -> Redis:
    """Create the event transport client from gate settings.

    Responses stay raw bytes; payload decoding happens in decode_decision.
    """
    return Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        ssl=settings.redis_tls,
    )


def decode_decision(payload: str | bytes) -> DecisionEvent:
    """Decode a decision message from its wire payload.

    Args:
        payload: Raw message data.

    Returns:
        The decoded event.

    Raises:
        ProtocolError: If the payload is not a JSON object with a
            deployment_id and an approval_status of "true" or "false".
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ProtocolError("Decision payload is not valid JSON", payload=payload) from e

    if not isinstance(data, dict):
        raise ProtocolError("Decision payload is not a JSON object", payload=payload)

    try:
        return DecisionEvent.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(
            "Decision payload is missing required fields",
            payload=payload,
            details={"errors": e.errors(include_url=False)},
        ) from e


class DecisionListener:
    """Waits for the decision on one deployment session.

    A listener serves a single session: one subscription, one pending
    wait. Malformed payloads and events for other sessions are logged and
    discarded without resolving the wait.
    """

    def __init__(self, redis: Any) -> None:  # redis.asyncio.Redis
        """Initialize the listener.

        Args:
            redis: Async Redis client. It is closed by close().
        """
        self.redis = redis
        self.deploy_id: str | None = None
        self._pubsub: Any = None
        self._future: asyncio.Future[DecisionEvent] | None = None
        self._reader: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="decision_listener")

    @property
    def subscribed(self) -> bool:
        """Whether a subscription is currently open."""
        return self._pubsub is not None

    @property
    def pending(self) -> bool:
        """Whether a wait is set up and not yet resolved."""
        return self._future is not None and not self._future.done()

    async def connect(self) -> None:
        """Verify the transport is reachable.

        Raises:
            TransportConnectError: If the server cannot be reached.
        """
        try:
            await self.redis.ping()
        except (RedisError, OSError) as e:
            raise TransportConnectError(
                "Could not connect to the event transport",
                operation="connect",
                details={"error": str(e)},
            ) from e
        self._logger.info("transport_connected")

    async def subscribe(self, deploy_id: str) -> None:
        """Subscribe to the decision channel of a session.

        Args:
            deploy_id: Session id; also the channel name.

        Raises:
            TransportSubscribeError: If the subscription cannot be established.
        """
        if self._future is not None:
            raise RuntimeError(f"Listener already used for {self.deploy_id}")

        self.deploy_id = deploy_id
        self._pubsub = self.redis.pubsub()
        try:
            await self._pubsub.subscribe(deploy_id)
        except (RedisError, OSError) as e:
            await self._teardown()
            raise TransportSubscribeError(
                "Could not subscribe to the decision channel",
                deploy_id=deploy_id,
                operation="subscribe",
                details={"error": str(e)},
            ) from e

        self._future = asyncio.get_running_loop().create_future()
        self._reader = asyncio.create_task(
            self._read_messages(), name=f"decision-reader-{deploy_id}"
        )
        self._logger.info("subscribed", deploy_id=deploy_id, channel=deploy_id)

    async def wait(self, timeout: float | None = None) -> DecisionEvent:
        """Suspend until the decision for the subscribed session arrives.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            The first valid decision event for the session.

        Raises:
            TransportSubscribeError: If the transport fails while waiting.
            DecisionTimeoutError: If the timeout expires.
        """
        if self._future is None:
            raise RuntimeError("subscribe() must be called before wait()")

        try:
            return await asyncio.wait_for(self._future, timeout)
        except TimeoutError as e:
            raise DecisionTimeoutError(
                f"No decision received within {timeout:g}s",
                timeout_seconds=timeout or 0.0,
                deploy_id=self.deploy_id,
            ) from e
        finally:
            await self._teardown()

    async def await_decision(
        self, deploy_id: str, timeout: float | None = None
    ) -> DecisionEvent:
        """Subscribe to a session's channel and wait for its decision."""
        await self.subscribe(deploy_id)
        return await self.wait(timeout)

    async def close(self) -> None:
        """Tear down the subscription and close the client."""
        await self._teardown()
        try:
            await self.redis.aclose()
        except (RedisError, OSError) as e:
            self._logger.warning("transport_close_failed", error=str(e))
        self._logger.info("transport_disconnected")

    async def _read_messages(self) -> None:
        """Reader task: resolve the future with the first matching decision."""
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                event = self._handle_message(message.get("data"))
                if event is not None:
                    self._resolve(event)
                    return
        except (RedisError, OSError) as e:
            self._reject(
                TransportSubscribeError(
                    "Decision channel failed",
                    deploy_id=self.deploy_id,
                    operation="await_decision",
                    details={"error": str(e)},
                )
            )
            return
        except Exception as e:
            self._logger.error(
                "decision_reader_failed",
                deploy_id=self.deploy_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._reject(
                TransportSubscribeError(
                    "Decision reader failed",
                    deploy_id=self.deploy_id,
                    operation="await_decision",
                    details={"error": str(e), "error_type": type(e).__name__},
                )
            )
            return

        self._reject(
            TransportSubscribeError(
                "Decision channel closed before a decision arrived",
                deploy_id=self.deploy_id,
                operation="await_decision",
            )
        )

    def _handle_message(self, data: str | bytes) -> DecisionEvent | None:
        """Decode one message; return it only if it belongs to this session."""
        try:
            event = decode_decision(data)
        except ProtocolError as e:
            self._logger.warning(
                "malformed_decision_discarded",
                deploy_id=self.deploy_id,
                reason=e.message,
                payload=e.payload,
            )
            return None

        if event.deployment_id != self.deploy_id:
            self._logger.debug(
                "decision_ignored_id_mismatch",
                deploy_id=self.deploy_id,
                received_id=event.deployment_id,
            )
            return None

        return event

    def _resolve(self, event: DecisionEvent) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(event)

    def _reject(self, error: DeployGateError) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    async def _teardown(self) -> None:
        """Stop reading and drop the subscription. Safe to call repeatedly."""
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            if self.deploy_id is not None:
                await pubsub.unsubscribe(self.deploy_id)
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            self._logger.warning(
                "unsubscribe_failed", deploy_id=self.deploy_id, error=str(e)
            )
        else:
            self._logger.debug("unsubscribed", deploy_id=self.deploy_id)

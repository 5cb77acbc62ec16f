"""Error taxonomy and retry helpers for the deployment gate.

Exception Hierarchy:
    DeployGateError (base)
    ├── ConfigurationError - Missing or invalid configuration
    ├── StoreError - Durable store failures
    │   ├── StoreWriteError - Store unreachable or write rejected
    │   └── StoreKeyError - Unknown deploy_id
    ├── NotifyError - Notification transport failures
    ├── TransportError - Event transport failures
    │   ├── TransportConnectError - Could not reach the transport
    │   └── TransportSubscribeError - Subscription failed or dropped
    ├── ProtocolError - Malformed decision payload (absorbed by the listener)
    └── DecisionTimeoutError - No decision before the deadline

Only ProtocolError is recoverable. Everything else aborts the gate.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ============================================================================
# Exception Hierarchy
# ============================================================================


class DeployGateError(Exception):
    """Base exception for all deployment gate errors.

    Attributes:
        message: Human-readable error message.
        deploy_id: Deployment session the error belongs to, if known.
        operation: Name of the failing operation.
        details: Additional error details.
        recoverable: Whether the gate can keep waiting after this error.
    """

    def __init__(
        self,
        message: str,
        *,
        deploy_id: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.deploy_id = deploy_id
        self.operation = operation
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.deploy_id:
            context.append(f"deploy_id={self.deploy_id}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "deploy_id": self.deploy_id,
            "operation": self.operation,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigurationError(DeployGateError):
    """Required configuration is missing or invalid.

    Attributes:
        missing: Names of the missing settings.
    """

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, operation="load_config", details=details)
        self.missing = missing or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["missing"] = self.missing
        return base


class StoreError(DeployGateError):
    """Durable store operation failed."""


class StoreWriteError(StoreError):
    """The store was unreachable or rejected the write."""


class StoreKeyError(StoreError):
    """The deploy_id is unknown to the store."""


class NotifyError(DeployGateError):
    """The approval request could not be posted."""


class TransportError(DeployGateError):
    """Event transport failed."""


class TransportConnectError(TransportError):
    """Could not connect to the event transport."""


class TransportSubscribeError(TransportError):
    """Subscribing to, or reading from, the decision channel failed."""


class ProtocolError(DeployGateError):
    """A decision payload could not be decoded.

    Attributes:
        payload: The raw payload, truncated for logging.
    """

    def __init__(
        self,
        message: str,
        *,
        payload: str | bytes | None = None,
        deploy_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            deploy_id=deploy_id,
            operation="decode_decision",
            details=details,
            recoverable=True,
        )
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        self.payload = payload[:200] if payload is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["payload"] = self.payload
        return base


class DecisionTimeoutError(DeployGateError):
    """No decision arrived before the deadline.

    Attributes:
        timeout_seconds: The deadline that was exceeded.
    """

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float,
        deploy_id: str | None = None,
    ) -> None:
        super().__init__(message, deploy_id=deploy_id, operation="await_decision")
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["timeout_seconds"] = self.timeout_seconds
        return base


# ============================================================================
# Retry Configuration
# ============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        min_wait_seconds: Minimum wait between retries.
        max_wait_seconds: Maximum wait between retries.
        multiplier: Exponential backoff multiplier.
        retry_exceptions: Exception types to retry on.
    """

    max_attempts: int = 1
    min_wait_seconds: float = 0.5
    max_wait_seconds: float = 10.0
    multiplier: float = 0.5
    retry_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (StoreWriteError, NotifyError)
    )


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for adding bounded retries with exponential backoff.

    StoreKeyError is never retried.

    Args:
        config: Retry configuration. Defaults to a single attempt.

    Returns:
        Decorated function with retry logic.

    Example:
        @with_retry(RetryConfig(max_attempts=3))
        async def put():
            await store.create_session(record)
    """
    retry_config = config or RetryConfig()

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0

            async for attempt_context in AsyncRetrying(
                stop=stop_after_attempt(max(retry_config.max_attempts, 1)),
                wait=wait_exponential(
                    multiplier=retry_config.multiplier,
                    min=retry_config.min_wait_seconds,
                    max=retry_config.max_wait_seconds,
                ),
                retry=retry_if_exception_type(retry_config.retry_exceptions),
                reraise=True,
            ):
                with attempt_context:
                    attempt += 1
                    if attempt > 1:
                        logger.info(
                            "retry_attempt",
                            function=getattr(fn, "__name__", repr(fn)),
                            attempt=attempt,
                            max_attempts=retry_config.max_attempts,
                        )
                    return await fn(*args, **kwargs)

            raise RuntimeError("Retry loop exited unexpectedly")

        return wrapper

    return decorator

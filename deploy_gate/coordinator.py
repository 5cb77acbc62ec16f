"""Approval coordinator for deployment gates.

The coordinator owns one deployment session from creation to its terminal
decision:

    initializing -> awaiting_decision -> approved
                                      -> rejected
                                      -> failed

Initialization connects the event transport, stores the pending session,
subscribes to the session's decision channel and posts the Slack request.
Any error during initialization, a transport failure or a missed deadline
while waiting ends in ``failed``. The outcome is returned as a GateOutcome;
mapping it to a process exit code is left to the CLI.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, TypeVar

import structlog
from pydantic import BaseModel, Field

from deploy_gate.config import Settings
from deploy_gate.errors import (
    DeployGateError,
    RetryConfig,
    TransportSubscribeError,
    with_retry,
)
from deploy_gate.session.models import TRUE, DecisionEvent, SessionRecord
from deploy_gate.session.store import SessionStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GateState(str, Enum):
    """Lifecycle state of a deployment gate."""

    INITIALIZING = "initializing"
    AWAITING_DECISION = "awaiting_decision"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check whether no further transitions can occur."""
        return self in (GateState.APPROVED, GateState.REJECTED, GateState.FAILED)


class GateOutcome(BaseModel):
    """Terminal result of a gate run."""

    state: GateState
    deploy_id: str | None = None
    reason: str | None = Field(
        default=None, description="Why the gate did not approve"
    )
    error: dict[str, Any] | None = Field(
        default=None, description="Serialized error for failed gates"
    )
    finished_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        """Whether the pipeline may proceed."""
        return self.state == GateState.APPROVED

    @property
    def exit_code(self) -> int:
        """Process exit code for the hosting pipeline step."""
        return 0 if self.succeeded else 1


class Notifier(Protocol):
    """Interface of approval request notifiers."""

    async def announce(self, record: SessionRecord) -> str: ...

    async def close(self) -> None: ...


class Listener(Protocol):
    """Interface of decision listeners."""

    async def connect(self) -> None: ...

    async def subscribe(self, deploy_id: str) -> None: ...

    async def wait(self, timeout: float | None = None) -> DecisionEvent: ...

    async def close(self) -> None: ...


class ApprovalCoordinator:
    """Gates a pipeline on a human decision for one deployment.

    A coordinator runs a single session. Construct a new one per gate.
    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        notifier: Notifier,
        listener: Listener,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            settings: Gate settings.
            store: Session persistence.
            notifier: Sends the approval request.
            listener: Delivers the decision event.
            id_factory: Generates deploy ids (uuid4 by default).
            clock: Returns the current UTC time.
        """
        self.settings = settings
        self.store = store
        self.notifier = notifier
        self.listener = listener
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or (lambda: datetime.now(UTC))
        self._store_retry = RetryConfig(max_attempts=settings.store_retry_attempts)
        self._notify_retry = RetryConfig(max_attempts=settings.notify_retry_attempts)

        self.state = GateState.INITIALIZING
        self.session: SessionRecord | None = None
        self.outcome: GateOutcome | None = None
        self._logger = logger.bind(
            component="approval_coordinator",
            service=settings.service,
            environment=settings.environment,
        )

    @property
    def deploy_id(self) -> str | None:
        """Id of the current session, once created."""
        return self.session.deploy_id if self.session else None

    async def run(self) -> GateOutcome:
        """Run the gate to a terminal outcome.

        Returns:
            The terminal GateOutcome. Errors never escape; they become a
            failed outcome carrying the failing operation and deploy_id.
        """
        try:
            try:
                await self._initialize()
            except DeployGateError as e:
                return self._fail(e)

            try:
                event = await self.listener.wait(self.settings.decision_timeout)
            except DeployGateError as e:
                return self._fail(e)

            self._logger.info(
                "decision_received",
                deploy_id=self.deploy_id,
                approval_status=event.approval_status,
            )
            outcome = await self.apply_decision(event)
            if outcome is None:
                return self._fail(
                    TransportSubscribeError(
                        "Listener resolved with a decision for another session",
                        operation="await_decision",
                        details={"received_id": event.deployment_id},
                    )
                )
            return outcome
        finally:
            await self._shutdown()

    async def apply_decision(self, event: DecisionEvent) -> GateOutcome | None:
        """Apply a decision event to the awaiting session.

        Events for other sessions, and events arriving once the gate is
        terminal, are ignored.

        Args:
            event: The decoded decision.

        Returns:
            The terminal outcome, the existing outcome for a closed gate,
            or None if the event was ignored while still awaiting.
        """
        if self.state.is_terminal:
            self._logger.info(
                "decision_ignored_gate_closed",
                deploy_id=self.deploy_id,
                state=self.state.value,
            )
            return self.outcome

        if self.state != GateState.AWAITING_DECISION or self.session is None:
            raise RuntimeError(f"Cannot apply a decision in state {self.state.value}")

        if event.deployment_id != self.session.deploy_id:
            self._logger.debug(
                "decision_ignored_id_mismatch",
                deploy_id=self.deploy_id,
                received_id=event.deployment_id,
            )
            return None

        field_name = "approved" if event.approved else "rejected"
        try:
            await self._retrying(
                self._store_retry,
                self.store.update_field,
                self.session.deploy_id,
                field_name,
                TRUE,
            )
        except DeployGateError as e:
            return self._fail(e)

        if event.approved:
            self.session.approved = TRUE
            return self._finish(GateState.APPROVED)

        self.session.rejected = TRUE
        return self._finish(GateState.REJECTED, reason="Deployment was rejected")

    async def _initialize(self) -> None:
        """Create, subscribe and announce the session."""
        await self.listener.connect()

        record = SessionRecord.start(
            self.settings, deploy_id=self._id_factory(), now=self._clock()
        )
        await self._retrying(self._store_retry, self.store.create_session, record)
        self.session = record
        self._logger.info(
            "session_created", deploy_id=record.deploy_id, run_url=record.run_url
        )

        # Must be subscribed before the buttons exist; pub/sub does not buffer.
        await self.listener.subscribe(record.deploy_id)
        self._logger.info("subscribed", deploy_id=record.deploy_id)

        ts = await self._retrying(self._notify_retry, self.notifier.announce, record)
        self._logger.info(
            "notification_sent",
            deploy_id=record.deploy_id,
            channel=self.settings.slack_channel,
            ts=ts,
        )

        self.state = GateState.AWAITING_DECISION
        self._logger.info("awaiting_decision", deploy_id=record.deploy_id)

    async def _retrying(
        self,
        config: RetryConfig,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        return await with_retry(config)(fn)(*args)

    def _finish(self, state: GateState, reason: str | None = None) -> GateOutcome:
        self.state = state
        self.outcome = GateOutcome(
            state=state,
            deploy_id=self.deploy_id,
            reason=reason,
            finished_at=self._clock(),
        )
        log = self._logger.info if state == GateState.APPROVED else self._logger.warning
        log("gate_finished", deploy_id=self.deploy_id, state=state.value, reason=reason)
        return self.outcome

    def _fail(self, error: DeployGateError) -> GateOutcome:
        if error.deploy_id is None:
            error.deploy_id = self.deploy_id
        self.state = GateState.FAILED
        self.outcome = GateOutcome(
            state=GateState.FAILED,
            deploy_id=self.deploy_id,
            reason=str(error),
            error=error.to_dict(),
            finished_at=self._clock(),
        )
        self._logger.error(
            "gate_failed",
            deploy_id=self.deploy_id,
            operation=error.operation,
            error_type=type(error).__name__,
            error=error.message,
        )
        return self.outcome

    async def _shutdown(self) -> None:
        """Close transport connections. Best effort."""
        for name, close in (
            ("listener", self.listener.close),
            ("notifier", self.notifier.close),
            ("store", self.store.close),
        ):
            try:
                await close()
            except Exception as e:
                self._logger.warning("shutdown_failed", resource=name, error=str(e))

"""Manual approval gate for deployment pipelines.

This package contains:
- ApprovalCoordinator, the session state machine
- Session records and their DynamoDB persistence
- The Slack approval request notifier
- The Redis decision listener
"""

from deploy_gate.config import Settings
from deploy_gate.coordinator import ApprovalCoordinator, GateOutcome, GateState
from deploy_gate.errors import (
    ConfigurationError,
    DecisionTimeoutError,
    DeployGateError,
    NotifyError,
    ProtocolError,
    StoreKeyError,
    StoreWriteError,
    TransportConnectError,
    TransportSubscribeError,
)

__all__ = [
    "ApprovalCoordinator",
    "ConfigurationError",
    "DecisionTimeoutError",
    "DeployGateError",
    "GateOutcome",
    "GateState",
    "NotifyError",
    "ProtocolError",
    "Settings",
    "StoreKeyError",
    "StoreWriteError",
    "TransportConnectError",
    "TransportSubscribeError",
]

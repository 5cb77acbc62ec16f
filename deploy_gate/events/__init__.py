"""Decision events delivered over Redis pub/sub."""

from deploy_gate.events.listener import (
    DecisionListener,
    create_redis_client,
    decode_decision,
)

__all__ = [
    "DecisionListener",
    "create_redis_client",
    "decode_decision",
]

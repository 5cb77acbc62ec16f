"""Deployment session records and their persistence."""

from deploy_gate.session.models import DecisionEvent, SessionRecord
from deploy_gate.session.store import (
    UPDATABLE_FIELDS,
    DynamoDBSessionStore,
    InMemorySessionStore,
    SessionStore,
)

__all__ = [
    "UPDATABLE_FIELDS",
    "DecisionEvent",
    "DynamoDBSessionStore",
    "InMemorySessionStore",
    "SessionRecord",
    "SessionStore",
]

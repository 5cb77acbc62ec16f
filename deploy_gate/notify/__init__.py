"""Approval request notifications."""

from deploy_gate.notify.blocks import (
    FIRST_APPROVER_ACTION,
    REJECT_ACTION,
    SECOND_APPROVER_ACTION,
    build_approval_blocks,
)
from deploy_gate.notify.slack import SlackNotifier

__all__ = [
    "FIRST_APPROVER_ACTION",
    "REJECT_ACTION",
    "SECOND_APPROVER_ACTION",
    "SlackNotifier",
    "build_approval_blocks",
]

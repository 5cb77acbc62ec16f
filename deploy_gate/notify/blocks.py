"""Slack Block Kit layout for approval requests."""

from typing import Any

from deploy_gate.session.models import SessionRecord

FALLBACK_TEXT = "Deployment Approval"

# Action identifiers carried by the buttons. The decision producer keys on these.
FIRST_APPROVER_ACTION = "first_approver"
SECOND_APPROVER_ACTION = "second_approver"
REJECT_ACTION = "reject_1"

DIVIDER: dict[str, Any] = {"type": "divider", "block_id": "divider1"}
HEADER: dict[str, Any] = {
    "type": "section",
    "text": {"type": "mrkdwn", "text": f"*{FALLBACK_TEXT}*"},
}


def _button(label: str, action_id: str, style: str, deploy_id: str) -> dict[str, Any]:
    return {
        "type": "button",
        "style": style,
        "text": {"type": "plain_text", "text": label},
        "value": deploy_id,
        "action_id": action_id,
    }


def build_actions(deploy_id: str) -> dict[str, Any]:
    """Build the actions block with the approve and reject buttons."""
    return {
        "type": "actions",
        "elements": [
            _button("1st Approver", FIRST_APPROVER_ACTION, "primary", deploy_id),
            _button("2nd Approver", SECOND_APPROVER_ACTION, "primary", deploy_id),
            _button("Reject", REJECT_ACTION, "danger", deploy_id),
        ],
    }


def build_context(record: SessionRecord) -> dict[str, Any]:
    """Build the context block describing the deployment."""
    return {
        "type": "context",
        "elements": [
            {"type": "plain_text", "text": f"Actor: {record.author}"},
            {"type": "plain_text", "text": f"Service: {record.service}"},
            {"type": "plain_text", "text": f"Commit: {record.commit}"},
            {"type": "plain_text", "text": f"Build ID: {record.build_id}"},
            {"type": "plain_text", "text": f"Environment: {record.environment}"},
            {"type": "mrkdwn", "text": f"Build: <{record.run_url}|Workflow Run>"},
        ],
    }


def build_approval_blocks(record: SessionRecord) -> list[dict[str, Any]]:
    """Build the full approval request message.

    Args:
        record: The session being announced.

    Returns:
        Block Kit blocks: divider, header, actions, context.
    """
    return [
        DIVIDER,
        HEADER,
        build_actions(record.deploy_id),
        build_context(record),
    ]

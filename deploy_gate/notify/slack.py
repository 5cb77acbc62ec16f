"""Slack Web API notifier.

Posts the approval request with ``chat.postMessage``.

Example:
    notifier = SlackNotifier(token="xoxb-...", channel="C0123")
    ts = await notifier.announce(record)
    await notifier.close()
"""

from typing import Any

import httpx
import structlog

from deploy_gate.errors import NotifyError
from deploy_gate.notify.blocks import FALLBACK_TEXT, build_approval_blocks
from deploy_gate.session.models import SessionRecord

logger = structlog.get_logger(__name__)


class SlackNotifier:
    """Sends approval requests to a Slack channel."""

    BASE_URL = "https://slack.com/api"

    def __init__(
        self,
        token: str,
        channel: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the notifier.

        Args:
            token: Slack bot token.
            channel: Channel id or name to post into.
            client: Optional HTTP client. A client passed in is not closed
                by close().
            timeout: Request timeout in seconds.
        """
        self.channel = channel
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._logger = logger.bind(component="slack_notifier", channel=channel)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this notifier created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def announce(self, record: SessionRecord) -> str:
        """Post the approval request for a session.

        Args:
            record: The session to announce. It must already be stored.

        Returns:
            Slack timestamp of the posted message.

        Raises:
            NotifyError: On transport failure or a Slack API error.
        """
        payload: dict[str, Any] = {
            "channel": self.channel,
            "text": FALLBACK_TEXT,
            "blocks": build_approval_blocks(record),
        }
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json; charset=utf-8",
        }

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.BASE_URL}/chat.postMessage",
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise NotifyError(
                "Slack request failed",
                deploy_id=record.deploy_id,
                operation="announce",
                details={"error": str(e)},
            ) from e

        if not response.is_success:
            raise NotifyError(
                f"Slack API returned HTTP {response.status_code}",
                deploy_id=record.deploy_id,
                operation="announce",
                details={"status": response.status_code, "body": response.text[:200]},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise NotifyError(
                "Slack API returned a non-JSON body",
                deploy_id=record.deploy_id,
                operation="announce",
                details={"body": response.text[:200]},
            ) from e

        if not data.get("ok"):
            error = data.get("error", "unknown")
            raise NotifyError(
                f"Slack API error: {error}",
                deploy_id=record.deploy_id,
                operation="announce",
                details={"slack_error": error},
            )

        ts = str(data.get("ts", ""))
        self._logger.debug("slack_message_posted", deploy_id=record.deploy_id, ts=ts)
        return ts

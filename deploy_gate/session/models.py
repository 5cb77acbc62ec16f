"""Deployment session and decision event models."""

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from deploy_gate.config import Settings

# Tri-state status values as stored. An empty string means "unset".
TRUE = "true"
FALSE = "false"


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with milliseconds and a Z suffix."""
    value = value.astimezone(UTC)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by format_timestamp."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SessionRecord(BaseModel):
    """Persisted approval state of one deployment.

    ``deploy_id`` is the only correlation key between the Slack message,
    the decision channel and the store record.
    """

    deploy_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier of this deployment session",
    )
    service: str = Field(..., description="Service being deployed")
    environment: str = Field(..., description="Target environment")
    build_id: str = Field(..., description="Pipeline run identifier")
    author: str = Field(..., description="Actor who triggered the run")
    commit: str = Field(..., description="Commit being deployed")
    run_url: str = Field(..., description="Link to the pipeline run")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the session was created",
    )

    # Approver identities are informational; they do not gate the decision.
    first_approver: str = ""
    second_approver: str = ""

    approved: Literal["", "true", "false"] = FALSE
    rejected: Literal["", "true", "false"] = FALSE

    @classmethod
    def start(
        cls,
        settings: "Settings",
        deploy_id: str | None = None,
        now: datetime | None = None,
    ) -> "SessionRecord":
        """Build a new pending session from gate settings.

        Args:
            settings: Gate settings describing the deployment.
            deploy_id: Session id (a fresh uuid4 when omitted).
            now: Creation time (current UTC time when omitted).

        Returns:
            A record with approved and rejected both set to "false".
        """
        return cls(
            deploy_id=deploy_id or str(uuid.uuid4()),
            service=settings.service,
            environment=settings.environment,
            build_id=settings.github_run_id,
            author=settings.github_author,
            commit=settings.github_sha,
            run_url=settings.run_url,
            created_at=now or datetime.now(UTC),
        )

    def is_closed(self) -> bool:
        """Check whether a terminal decision has been recorded."""
        return self.approved == TRUE or self.rejected == TRUE

    def to_item(self) -> dict[str, dict[str, str]]:
        """Convert to a DynamoDB attribute map of string values."""
        values = {
            "deploy_id": self.deploy_id,
            "timestamp": format_timestamp(self.created_at),
            "environment": self.environment,
            "run_url": self.run_url,
            "first_approver": self.first_approver,
            "second_approver": self.second_approver,
            "service": self.service,
            "github_build_id": self.build_id,
            "author": self.author,
            "commit": self.commit,
            "approved": self.approved,
            "rejected": self.rejected,
        }
        return {name: {"S": value} for name, value in values.items()}

    @classmethod
    def from_item(cls, item: dict[str, dict[str, str]]) -> "SessionRecord":
        """Rebuild a record from a DynamoDB attribute map."""

        def value(name: str) -> str:
            return item.get(name, {}).get("S", "")

        return cls(
            deploy_id=value("deploy_id"),
            service=value("service"),
            environment=value("environment"),
            build_id=value("github_build_id"),
            author=value("author"),
            commit=value("commit"),
            run_url=value("run_url"),
            created_at=parse_timestamp(value("timestamp")),
            first_approver=value("first_approver"),
            second_approver=value("second_approver"),
            approved=value("approved"),
            rejected=value("rejected"),
        )


class DecisionEvent(BaseModel):
    """Decision message received on a session's channel.

    Wire format::

        {"deployment_id": "<deploy_id>", "approval_status": "true" | "false"}
    """

    deployment_id: str = Field(..., min_length=1)
    approval_status: Literal["true", "false"]

    @property
    def approved(self) -> bool:
        """Whether this event approves the deployment."""
        return self.approval_status == TRUE

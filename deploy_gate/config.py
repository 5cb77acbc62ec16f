"""Gate configuration settings.

Settings are read once at process start, from GitHub Actions inputs
(``INPUT_<NAME>``) with a fallback to plain environment variables, and
then passed explicitly to the coordinator.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from deploy_gate.errors import ConfigurationError

REQUIRED_INPUTS = (
    "SERVICE",
    "ENVIRONMENT",
    "GITHUB_RUN_ID",
    "GITHUB_AUTHOR",
    "GITHUB_SHA",
    "GITHUB_REPOSITORY",
    "SLACK_CHANNEL",
    "SLACK_TOKEN",
    "DYNAMODB_TABLE",
    "AWS_REGION",
    "AWS_ACCESS_KEY",
    "AWS_SECRET_KEY",
)


def _get_input(env: Mapping[str, str], name: str, default: str = "") -> str:
    """Get an action input, falling back to the bare environment variable.

    Args:
        env: Environment mapping.
        name: Input name (upper case).
        default: Value used when neither variable is set or both are blank.

    Returns:
        The stripped value.
    """
    for key in (f"INPUT_{name}", name):
        value = env.get(key, "").strip()
        if value:
            return value
    return default


def _get_bool_input(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    """Get a boolean input value."""
    value = _get_input(env, name).lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_input(env: Mapping[str, str], name: str, default: int) -> int:
    value = _get_input(env, name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}",
            details={"name": name, "value": value},
        ) from e


def _get_float_input(env: Mapping[str, str], name: str) -> float | None:
    value = _get_input(env, name)
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number of seconds, got {value!r}",
            details={"name": name, "value": value},
        ) from e
    return seconds if seconds > 0 else None


@dataclass
class Settings:
    """Deployment gate settings.

    Attributes:
        service: Service being deployed.
        environment: Target environment name.
        github_run_id: Pipeline run identifier.
        github_author: Actor who triggered the run.
        github_sha: Commit being deployed.
        github_repository: ``owner/repo`` used to build the run URL.
        slack_channel: Channel that receives the approval request.
        slack_token: Slack bot token.
        dynamodb_table: Table holding session records.
        aws_region: AWS region of the table.
        aws_access_key: AWS access key id.
        aws_secret_key: AWS secret access key.
        redis_host: Event transport host.
        redis_port: Event transport port.
        redis_tls: Connect with TLS (``rediss://``).
        redis_password: Optional transport password.
        github_server_url: Base URL of the GitHub instance.
        dynamodb_endpoint_url: Optional endpoint override (DynamoDB Local).
        decision_timeout: Seconds to wait for a decision; None waits forever.
        store_retry_attempts: Attempts per store write.
        notify_retry_attempts: Attempts per notification.
        log_level: Logging level.
        log_format: ``console`` or ``json``.
    """

    service: str
    environment: str
    github_run_id: str
    github_author: str
    github_sha: str
    github_repository: str
    slack_channel: str
    slack_token: str = field(repr=False)
    dynamodb_table: str
    aws_region: str
    aws_access_key: str = field(repr=False)
    aws_secret_key: str = field(repr=False)

    # Event transport
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_tls: bool = False
    redis_password: str | None = field(default=None, repr=False)

    github_server_url: str = "https://github.com"
    dynamodb_endpoint_url: str | None = None

    # Gate behavior
    decision_timeout: float | None = None
    store_retry_attempts: int = 1
    notify_retry_attempts: int = 1

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    @property
    def run_url(self) -> str:
        """Link to the pipeline run that is waiting on this gate."""
        base = self.github_server_url.rstrip("/")
        return f"{base}/{self.github_repository}/actions/runs/{self.github_run_id}"

    @property
    def redis_url(self) -> str:
        """Connection URL for the event transport."""
        scheme = "rediss" if self.redis_tls else "redis"
        return f"{scheme}://{self.redis_host}:{self.redis_port}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Create settings from action inputs and environment variables.

        Args:
            env: Environment mapping (defaults to ``os.environ``).

        Returns:
            Settings instance.

        Raises:
            ConfigurationError: If required inputs are missing or malformed.
        """
        env = os.environ if env is None else env

        missing = [name for name in REQUIRED_INPUTS if not _get_input(env, name)]
        if missing:
            raise ConfigurationError(
                f"Missing required inputs: {', '.join(missing)}",
                missing=missing,
            )

        return cls(
            service=_get_input(env, "SERVICE"),
            environment=_get_input(env, "ENVIRONMENT"),
            github_run_id=_get_input(env, "GITHUB_RUN_ID"),
            github_author=_get_input(env, "GITHUB_AUTHOR"),
            github_sha=_get_input(env, "GITHUB_SHA"),
            github_repository=_get_input(env, "GITHUB_REPOSITORY"),
            slack_channel=_get_input(env, "SLACK_CHANNEL"),
            slack_token=_get_input(env, "SLACK_TOKEN"),
            dynamodb_table=_get_input(env, "DYNAMODB_TABLE"),
            aws_region=_get_input(env, "AWS_REGION"),
            aws_access_key=_get_input(env, "AWS_ACCESS_KEY"),
            aws_secret_key=_get_input(env, "AWS_SECRET_KEY"),
            redis_host=_get_input(env, "REDIS_HOST", "localhost"),
            redis_port=_get_int_input(env, "REDIS_PORT", 6379),
            redis_tls=_get_bool_input(env, "REDIS_TLS", default=False),
            redis_password=_get_input(env, "REDIS_PASSWORD") or None,
            github_server_url=_get_input(env, "GITHUB_SERVER_URL", "https://github.com"),
            dynamodb_endpoint_url=_get_input(env, "DYNAMODB_ENDPOINT_URL") or None,
            decision_timeout=_get_float_input(env, "DECISION_TIMEOUT"),
            store_retry_attempts=_get_int_input(env, "STORE_RETRY_ATTEMPTS", 1),
            notify_retry_attempts=_get_int_input(env, "NOTIFY_RETRY_ATTEMPTS", 1),
            log_level=_get_input(env, "LOG_LEVEL", "INFO").upper(),
            log_format=_get_input(env, "LOG_FORMAT", "console").lower(),
        )

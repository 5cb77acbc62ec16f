"""Command-line entry point for the deployment gate.

Runs one gate inside a pipeline step and maps its outcome to the exit
code: 0 when approved, 1 when rejected, failed or misconfigured.
"""

import argparse
import asyncio
import os
import signal
import sys

import structlog

from deploy_gate.config import Settings
from deploy_gate.coordinator import ApprovalCoordinator, GateOutcome, GateState
from deploy_gate.errors import ConfigurationError
from deploy_gate.events.listener import DecisionListener, create_redis_client
from deploy_gate.log import configure_logging
from deploy_gate.notify.slack import SlackNotifier
from deploy_gate.session.store import DynamoDBSessionStore

logger = structlog.get_logger(__name__)


def build_coordinator(settings: Settings) -> ApprovalCoordinator:
    """Wire the production adapters into a coordinator.

    Args:
        settings: Gate settings.

    Returns:
        Coordinator backed by DynamoDB, Slack and Redis.
    """
    return ApprovalCoordinator(
        settings,
        store=DynamoDBSessionStore.from_settings(settings),
        notifier=SlackNotifier(settings.slack_token, settings.slack_channel),
        listener=DecisionListener(create_redis_client(settings)),
    )


async def run_gate(
    settings: Settings, coordinator: ApprovalCoordinator | None = None
) -> GateOutcome:
    """Run a gate, cancelling it cleanly on SIGTERM.

    Args:
        settings: Gate settings.
        coordinator: Pre-built coordinator (built from settings if omitted).

    Returns:
        The terminal outcome.
    """
    coordinator = coordinator or build_coordinator(settings)
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    handler_installed = False
    if task is not None:
        try:
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("sigterm_handler_unavailable")

    try:
        return await coordinator.run()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGTERM)


def write_step_outputs(outcome: GateOutcome, path: str | None = None) -> None:
    """Append the outcome to the GitHub Actions step output file, if any."""
    path = path or os.getenv("GITHUB_OUTPUT")
    if not path:
        return
    with open(path, "a") as f:
        f.write(f"deploy_id={outcome.deploy_id or ''}\n")
        f.write(f"state={outcome.state.value}\n")


def report(outcome: GateOutcome) -> None:
    """Print the outcome for the pipeline log."""
    if outcome.state == GateState.APPROVED:
        print(f"Deployment approved (deploy_id={outcome.deploy_id})")
        return

    if outcome.state == GateState.REJECTED:
        message = f"Deployment was rejected (deploy_id={outcome.deploy_id})"
    else:
        message = f"Deployment gate failed: {outcome.reason}"
    # Workflow command: marks the step as failed in the run summary.
    print(f"::error::{message}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="deploy-gate",
        description="Block a deployment until it is approved in Slack",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for a decision (default: wait indefinitely)",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        help="Log output format (overrides LOG_FORMAT)",
    )
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        configure_logging(args.log_level or "INFO", args.log_format or "console")
        logger.error("configuration_invalid", **e.to_dict())
        print(f"::error::An error occurred during initialization: {e}")
        return 1

    if args.timeout is not None:
        settings.decision_timeout = args.timeout if args.timeout > 0 else None
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if args.log_format:
        settings.log_format = args.log_format

    configure_logging(settings.log_level, settings.log_format)

    coordinator = build_coordinator(settings)
    try:
        outcome = asyncio.run(run_gate(settings, coordinator))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("gate_cancelled", deploy_id=coordinator.deploy_id)
        print("::error::Deployment gate was cancelled")
        write_step_outputs(
            coordinator.outcome
            or GateOutcome(
                state=GateState.FAILED,
                deploy_id=coordinator.deploy_id,
                reason="Deployment gate was cancelled",
            )
        )
        return 1

    report(outcome)
    write_step_outputs(outcome)
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())

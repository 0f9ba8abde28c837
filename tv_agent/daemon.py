#!/usr/bin/env python3
"""TV Agent daemon.

Keeps the TV connected to the control server and executes remote key
commands through ADB.

Usage:
    python -m tv_agent --ws-url wss://example.com/ws --register-url https://example.com/api/registertv

Or via installed CLI:
    tv-agent --ws-url wss://example.com/ws --register-url https://example.com/api/registertv
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Any

import click
from dotenv import load_dotenv

from tv_agent import __version__
from tv_agent.config import AgentConfig, ConfigError, load_config_file, merge_config
from tv_agent.connection import ConnectionManager
from tv_agent.executor import AdbKeyEventExecutor
from tv_agent.host import HostResources, LockHeldError, ProcessLock, WakeLock
from tv_agent.identity import get_local_ip, resolve_identity
from tv_agent.logging_utils import configure_logging
from tv_agent.registration import RegistrationClient

logger = logging.getLogger("tv_agent")


def build_config(cli_values: dict[str, Any], config_file: str | None) -> AgentConfig:
    """CLI/env values, overridden by the YAML file when one is given."""
    file_values = load_config_file(config_file) if config_file else {}
    return merge_config(cli_values, file_values)


def run_agent(config: AgentConfig) -> int:
    """Acquire host resources, run the connection loop, and return the exit code."""
    resources = HostResources(ProcessLock(config.lock_path), WakeLock(config.wake_lock))
    try:
        resources.acquire()
    except LockHeldError as e:
        logger.warning("TV Agent already running (PID: %s)", e.pid)
        return 0

    try:
        identity = resolve_identity(config.device_id_path, config.group_id)
    except OSError:
        logger.exception("Could not resolve device identity")
        resources.release()
        return 1

    logger.info("Device: tv_id=%s model=%s brand=%s ip=%s", identity.id, identity.model, identity.brand, identity.ip)

    registration = RegistrationClient(config.register_url, identity, timeout=config.register_timeout)
    executor = AdbKeyEventExecutor(config.adb_path)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        manager = ConnectionManager(
            config,
            identity,
            executor=executor,
            registration=registration,
            resources=resources,
            ip_lookup=get_local_ip,
        )

        stopping: list[asyncio.Task[None]] = []

        def shutdown_handler(sig: signal.Signals) -> None:
            logger.info("Received signal %s, shutting down...", sig.name)
            stopping.append(loop.create_task(manager.stop()))

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_handler, sig)

        exit_code = loop.run_until_complete(manager.run())
        loop.run_until_complete(executor.drain())
        if stopping:
            loop.run_until_complete(asyncio.wait(stopping))
        return exit_code
    finally:
        # Covers errors raised before the manager could tear down.
        resources.release()
        registration.close()
        loop.close()
        logger.info("TV Agent stopped")


@click.command()
@click.option(
    "--ws-url",
    envvar="TV_AGENT_WS_URL",
    required=True,
    help="WebSocket URL of the control server (e.g., wss://example.com/ws)",
)
@click.option(
    "--register-url",
    envvar="TV_AGENT_REGISTER_URL",
    required=True,
    help="HTTP endpoint for device registration",
)
@click.option(
    "--group-id",
    envvar="TV_AGENT_GROUP_ID",
    default=1,
    type=int,
    help="Branch/group id reported with the registration (default: 1)",
)
@click.option(
    "--ping-interval",
    envvar="TV_AGENT_PING_INTERVAL",
    default=60.0,
    type=float,
    help="Ping interval in seconds (default: 60)",
)
@click.option(
    "--max-reconnect-attempts",
    envvar="TV_AGENT_MAX_RECONNECT_ATTEMPTS",
    default=100,
    type=int,
    help="Give up and exit after this many consecutive failed reconnects (default: 100)",
)
@click.option(
    "--config-file",
    envvar="TV_AGENT_CONFIG_FILE",
    default=None,
    type=click.Path(exists=False),
    help="Path to YAML configuration file",
)
@click.option("--no-wake-lock", is_flag=True, help="Do not hold a Termux wake-lock")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="tv-agent")
def cli(
    ws_url: str,
    register_url: str,
    group_id: int,
    ping_interval: float,
    max_reconnect_attempts: int,
    config_file: str | None,
    no_wake_lock: bool,
    debug: bool,
) -> None:
    """TV Agent daemon.

    Connects to the control server, keeps the connection alive, and turns
    remote commands into key events on this TV.
    """
    configure_logging(1 if debug else 0)

    cli_values: dict[str, Any] = {
        "ws_url": ws_url,
        "register_url": register_url,
        "group_id": group_id,
        "ping_interval": ping_interval,
        "max_reconnect_attempts": max_reconnect_attempts,
        "wake_lock": not no_wake_lock,
    }
    try:
        config = build_config(cli_values, config_file)
    except ConfigError as e:
        raise click.UsageError(str(e)) from e

    logger.info("Starting TV Agent %s", __version__)
    logger.info("Server WebSocket URL: %s", config.ws_url)
    logger.info("Ping interval: %.0f seconds", config.ping_interval)

    sys.exit(run_agent(config))


def main() -> None:
    load_dotenv(os.getenv("ENV_FILE", ".env"))
    cli()


if __name__ == "__main__":
    main()

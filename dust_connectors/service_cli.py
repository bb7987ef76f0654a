#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Command Line Interface.

This is the main entry point of the worker. When the project is installed as
a Python package, a `dust-connectors` executable is added in the PATH and
executes the `main` function of this module, which starts the service.

One-shot actions run a single workflow for one connector and exit once every
workflow it launched is done.
"""
import asyncio
import functools
import logging
import os
import signal

import click
from click import ClickException, UsageError

from dust_connectors import __version__
from dust_connectors.config import load_config
from dust_connectors.logger import logger, set_logger
from dust_connectors.protocol.workflows import WorkflowIndex
from dust_connectors.services import get_services
from dust_connectors.services.orchestrator import WorkflowOrchestrator
from dust_connectors.sources.google_drive.context import GoogleDriveContext
from dust_connectors.sources.google_drive.manager import (
    GoogleDriveConnectorManager,
    renew_webhooks_workflow_id,
)
from dust_connectors.sources.google_drive.workflows import (
    google_drive_renew_webhooks,
)
from dust_connectors.utils import sleeps_for_retryable

__all__ = ["main"]

SERVICE_ACTION = "run"
CONNECTOR_ACTIONS = ("full_sync", "incremental_sync", "garbage_collect")
GLOBAL_ACTIONS = ("renew_webhooks",)


async def _start_service(config, loop):
    """Starts the long running service and stops it on SIGINT/SIGTERM."""
    multi_service = get_services(["google_drive"], config)

    def _shutdown(signal_name):
        sleeps_for_retryable.cancel(signal_name)
        multi_service.shutdown(signal_name)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, functools.partial(_shutdown, sig.name))

    return await multi_service.run()


async def _launch(manager, action, connector_id):
    if action == "full_sync":
        return await manager.launch_full_sync(connector_id)
    if action == "incremental_sync":
        return await manager.launch_incremental_sync(connector_id)
    if action == "garbage_collect":
        return await manager.launch_garbage_collector(connector_id)
    workflow_id = renew_webhooks_workflow_id()
    await manager.orchestrator.start(
        workflow_id, google_drive_renew_webhooks, manager
    )
    return workflow_id


async def _run_once(action, config, connector_id):
    """Runs one workflow, and whatever it launches, to completion."""
    ctx = GoogleDriveContext(config)
    workflow_index = WorkflowIndex(
        config["elasticsearch"], index_name=config["indices"]["workflows"]
    )
    orchestrator = WorkflowOrchestrator(config, workflow_index=workflow_index)
    manager = GoogleDriveConnectorManager(ctx, orchestrator)
    try:
        await ctx.ensure_indices()
        await workflow_index.ensure_exists()
        workflow_id = await _launch(manager, action, connector_id)
        logger.info(f"Launched workflow {workflow_id}")

        failed = 0
        while orchestrator.running_workflows:
            for running_id in orchestrator.running_workflows:
                await orchestrator.join(running_id)
                run = orchestrator.get(running_id)
                if run is not None and run.error is not None:
                    failed += 1
        return 1 if failed else 0
    finally:
        await orchestrator.stop()
        await ctx.close()
        await workflow_index.close()


def get_event_loop():
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


def run(action, config_file, log_level, filebeat, connector_id):
    """Loads the config file, sets the logger and executes an action.

    Actions:
    - run: starts the service and runs forever (default)
    - full_sync, incremental_sync, garbage_collect: one-shot, for `connector_id`
    - renew_webhooks: one-shot renewal of the expiring webhooks
    """
    logger.info(f"Running dust connectors version {__version__}")

    try:
        config = load_config(config_file)
    except Exception as e:
        # If something goes wrong while parsing config file, we still want
        # to set up the logger so that errors are reported properly
        set_logger(logging.INFO, filebeat=filebeat)
        msg = f"Could not parse {config_file}. Check logs for more information"
        logger.exception(f"{msg}.\n{e}")
        raise ClickException(msg) from e

    # Precedence: CLI args >> Config Setting >> INFO
    set_logger(
        log_level or config["service"]["log_level"] or logging.INFO,
        filebeat=filebeat,
    )

    if action in CONNECTOR_ACTIONS and not connector_id:
        msg = f"The `{action}` action requires --connector-id"
        raise UsageError(msg)

    loop = get_event_loop()
    if action == SERVICE_ACTION:
        coro = _start_service(config, loop)
    else:
        coro = _run_once(action, config, connector_id)

    try:
        return loop.run_until_complete(coro)
    except asyncio.CancelledError:
        return 0
    finally:
        logger.info("Bye")


@click.command()
@click.version_option(__version__, "-v", "--version", message="%(version)s")
@click.option(
    "--action",
    type=click.Choice(
        [SERVICE_ACTION, *CONNECTOR_ACTIONS, *GLOBAL_ACTIONS], case_sensitive=False
    ),
    default=SERVICE_ACTION,
    show_default=True,
    help="What dust-connectors should do.",
)
@click.option(
    "-c",
    "--config-file",
    type=click.Path(),
    default=os.path.join(os.path.dirname(__file__), "..", "config.yml"),
    show_default=True,
    help="Configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set log level for the service.",
)
@click.option(
    "--debug",
    "log_level",
    flag_value="DEBUG",
    help="Run the event loop in debug mode (alias for --log-level DEBUG).",
)
@click.option(
    "--filebeat", is_flag=True, default=False, help="Output in filebeat format."
)
@click.option(
    "--connector-id",
    type=str,
    default=None,
    help="Connector to run a one-shot action for.",
)
def main(action, config_file, log_level, filebeat, connector_id):
    """Entry point to the service, responsible for all operations.

    Parses the arguments and calls `run` with them.
    """

    return run(action.lower(), config_file, log_level, filebeat, connector_id)

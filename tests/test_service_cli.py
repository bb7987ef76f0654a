#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import logging
import os
from unittest import mock
from unittest.mock import AsyncMock, patch

import pytest
from click import ClickException, UsageError
from click.testing import CliRunner

from dust_connectors import __version__
from dust_connectors.config import default_config
from dust_connectors.exceptions import InternalRemoteError
from dust_connectors.service_cli import _run_once, main
from tests.fake_google_drive import FakeWorkflowIndex, add_connector, make_context

SUCCESS_EXIT_CODE = 0
CLICK_EXCEPTION_EXIT_CODE = ClickException.exit_code
USAGE_ERROR_EXIT_CODE = UsageError.exit_code

HERE = os.path.dirname(__file__)
FIXTURES_DIR = os.path.abspath(os.path.join(HERE, "fixtures"))
CONFIG = os.path.join(FIXTURES_DIR, "config.yml")


@pytest.fixture
def set_env():
    with mock.patch.dict(os.environ, {"elasticsearch.password": "password"}):
        yield


@pytest.mark.parametrize("option", ["-v", "--version"])
def test_version_action(option):
    runner = CliRunner()
    result = runner.invoke(main, [option])

    assert result.exit_code == SUCCESS_EXIT_CODE
    assert __version__ in result.output


@patch("dust_connectors.service_cli.set_logger")
@patch(
    "dust_connectors.service_cli.load_config",
    side_effect=Exception("something went wrong"),
)
def test_main_with_invalid_configuration(load_config, set_logger):
    runner = CliRunner()

    log_level = "DEBUG"  # should be ignored!

    result = runner.invoke(main, ["--log-level", log_level, "--filebeat"])

    assert result.exit_code == CLICK_EXCEPTION_EXIT_CODE
    set_logger.assert_called_with(logging.INFO, filebeat=True)


@pytest.mark.parametrize("action", ["full_sync", "incremental_sync", "garbage_collect"])
def test_connector_actions_require_connector_id(action, set_env):
    runner = CliRunner()

    result = runner.invoke(main, ["--config-file", CONFIG, "--action", action])

    assert result.exit_code == USAGE_ERROR_EXIT_CODE
    assert f"The `{action}` action requires --connector-id" in result.output


def test_unknown_action(set_env):
    runner = CliRunner()

    result = runner.invoke(main, ["--config-file", CONFIG, "--action", "cleanup"])

    assert result.exit_code == USAGE_ERROR_EXIT_CODE


@patch("dust_connectors.service_cli._run_once", new_callable=AsyncMock)
def test_one_shot_action(run_once, set_env):
    run_once.return_value = 0
    runner = CliRunner()

    result = runner.invoke(
        main,
        [
            "--config-file",
            CONFIG,
            "--action",
            "FULL_SYNC",
            "--connector-id",
            "connector-1",
        ],
    )

    assert result.exit_code == SUCCESS_EXIT_CODE
    action, config, connector_id = run_once.await_args.args
    assert action == "full_sync"
    assert config["google_drive"]["webhook_secret"] == "s3cr3t"
    assert connector_id == "connector-1"


@patch("dust_connectors.service_cli._run_once", new_callable=AsyncMock)
def test_renew_webhooks_does_not_need_a_connector(run_once, set_env):
    run_once.return_value = 0
    runner = CliRunner()

    result = runner.invoke(
        main, ["--config-file", CONFIG, "--action", "renew_webhooks"]
    )

    assert result.exit_code == SUCCESS_EXIT_CODE
    assert run_once.await_args.args[0] == "renew_webhooks"
    assert run_once.await_args.args[2] is None


@patch("dust_connectors.service_cli._start_service", new_callable=AsyncMock)
def test_default_action_starts_the_service(start_service, set_env):
    runner = CliRunner()

    result = runner.invoke(main, ["--config-file", CONFIG])

    assert result.exit_code == SUCCESS_EXIT_CODE
    start_service.assert_awaited_once()
    assert start_service.await_args.args[0]["connectors"] == ["connector-1"]


@pytest.fixture
def one_shot(drive):
    drive.add_folder("F1")
    drive.add_file("doc1", parent="F1")
    ctx = make_context(client=drive)
    workflow_index = FakeWorkflowIndex()
    with patch(
        "dust_connectors.service_cli.GoogleDriveContext", return_value=ctx
    ), patch("dust_connectors.service_cli.WorkflowIndex", return_value=workflow_index):
        yield ctx, workflow_index


@pytest.mark.asyncio
async def test_run_once_full_sync(one_shot):
    ctx, workflow_index = one_shot
    await add_connector(ctx, "connector-1", folder_ids=["F1"])

    assert await _run_once("full_sync", default_config(), "connector-1") == 0

    assert sorted(ctx.sink.docs) == ["gdrive-doc1"]
    connector = await ctx.get_connector("connector-1")
    # the garbage collection launched by the sync ran too
    assert connector.last_gc_time is not None
    assert ctx.mirror.closed
    assert workflow_index.closed


@pytest.mark.asyncio
async def test_run_once_reports_failures(one_shot):
    ctx, _ = one_shot
    await add_connector(ctx, "connector-1", folder_ids=["F1"])
    ctx.drive.errors["list_children_page"] = InternalRemoteError("boom", 500)
    config = default_config()
    config["service"]["activity_retry_interval"] = 0
    config["service"]["activity_max_attempts"] = 1

    assert await _run_once("full_sync", config, "connector-1") == 1


@pytest.mark.asyncio
async def test_run_once_renew_webhooks(one_shot):
    assert await _run_once("renew_webhooks", default_config(), None) == 0

#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
from datetime import datetime, timezone

import pytest

from dust_connectors.exceptions import ConnectorNotFoundError, InvalidRemoteObjectError
from dust_connectors.sources.google_drive.context import Generation
from dust_connectors.sources.google_drive.drives import (
    folder_has_children,
    get_drives,
    get_drives_to_sync,
    get_folders_to_sync,
)
from tests.fake_google_drive import MY_DRIVE_ID, add_connector


def test_generation_round_trip():
    generation = Generation(
        id="gen-1", started_at=datetime(2024, 3, 1, tzinfo=timezone.utc)
    )

    assert generation.to_dict() == {
        "id": "gen-1",
        "started_at": "2024-03-01T00:00:00+00:00",
    }
    assert Generation.from_dict(generation.to_dict()) == generation


def test_generations_are_distinct():
    assert Generation().id != Generation().id


@pytest.mark.asyncio
async def test_get_connector_not_found(ctx):
    with pytest.raises(ConnectorNotFoundError):
        await ctx.get_connector("missing")


@pytest.mark.asyncio
async def test_client_is_built_once_per_connector(ctx):
    connector = await add_connector(ctx)
    built = []

    def factory(connector):
        built.append(connector.id)
        return object()

    ctx._client_factory = factory

    assert ctx.client_for(connector) is ctx.client_for(connector)
    assert built == ["connector-1"]


def test_logger_for(ctx):
    log = ctx.logger_for("connector-1", "full_sync", folder_id="F1")

    assert log.prefix == "[Connector id: connector-1][full_sync][folder_id: F1]"
    assert log.extra["labels.connector_id"] == "connector-1"
    assert log.extra["labels.activity"] == "full_sync"
    assert log.extra["labels.folder_id"] == "F1"
    assert log.extra["labels.run_instance"]


@pytest.mark.asyncio
async def test_ensure_indices_and_close(ctx):
    await ctx.ensure_indices()
    await ctx.close()

    assert all(index.closed for index in ctx.indices)


@pytest.mark.asyncio
async def test_get_drives(ctx, drive):
    drive.add_shared_drive("shared-1", "Team")
    await add_connector(ctx)

    drives = await get_drives(ctx, "connector-1")

    assert [d.id for d in drives] == [MY_DRIVE_ID, "shared-1"]


@pytest.mark.asyncio
async def test_get_drives_to_sync(ctx, drive):
    drive.add_shared_drive("shared-1", "Team")
    drive.add_shared_drive("shared-2", "Unused")
    drive.add_folder("F1")
    drive.add_folder("F2", parent="F1")
    drive.add_folder("S1", parent="shared-1")
    await add_connector(ctx, folder_ids=["F1", "F2", "S1", "gone"])

    drives = await get_drives_to_sync(ctx, "connector-1")

    assert {d.id: d.is_shared_drive for d in drives} == {
        MY_DRIVE_ID: False,
        "shared-1": True,
    }


@pytest.mark.asyncio
async def test_get_drives_to_sync_folder_without_drive(ctx, drive):
    drive.add_folder("F1")
    drive.my_drive = None
    await add_connector(ctx, folder_ids=["F1"])

    with pytest.raises(InvalidRemoteObjectError):
        await get_drives_to_sync(ctx, "connector-1")


@pytest.mark.asyncio
async def test_folders_to_sync_and_children(ctx, drive):
    drive.add_folder("F1")
    drive.add_folder("F2", parent="F1")
    await add_connector(ctx, folder_ids=["F2", "F1"])

    assert await get_folders_to_sync(ctx, "connector-1") == ["F1", "F2"]
    assert await folder_has_children(ctx, "connector-1", "F1") is True
    assert await folder_has_children(ctx, "connector-1", "F2") is False

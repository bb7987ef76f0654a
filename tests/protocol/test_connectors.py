#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from dust_connectors.protocol.connectors import Status, SyncErrorType, SyncStatus
from tests.fake_google_drive import FakeConnectorIndex


@pytest.fixture
def connectors():
    index = FakeConnectorIndex()
    index.add("connector-1")
    return index


@pytest.mark.asyncio
async def test_get_missing_connector(connectors):
    assert await connectors.get("missing") is None


@pytest.mark.asyncio
async def test_connector_properties(connectors):
    connectors.add(
        "connector-2",
        configuration={"pdf_enabled": True},
        connection={
            "service_account_credentials": '{"client_email": "sa@example.com"}',
            "subject": "admin@example.com",
        },
    )

    connector = await connectors.get("connector-2")

    assert connector.status == Status.CONNECTED
    assert connector.workspace_id == "workspace-1"
    assert connector.pdf_enabled is True
    assert connector.credentials == {"client_email": "sa@example.com"}
    assert connector.subject == "admin@example.com"
    assert connector.last_sync_status == SyncStatus.UNSET
    assert connector.last_gc_time is None


@pytest.mark.asyncio
async def test_all_connectors_filters_on_ids(connectors):
    connectors.add("connector-2")
    connectors.add("other", service_type="slack")

    all_ids = [connector.id async for connector in connectors.all_connectors()]
    some_ids = [
        connector.id
        async for connector in connectors.all_connectors(["connector-2"])
    ]

    assert sorted(all_ids) == ["connector-1", "connector-2"]
    assert some_ids == ["connector-2"]


@pytest.mark.asyncio
@freeze_time("2024-03-01 10:00:00")
async def test_sync_lifecycle(connectors):
    connector = await connectors.get("connector-1")

    await connector.sync_started()
    assert connectors.source("connector-1")["last_sync_status"] == "in_progress"

    await connector.sync_failed(SyncErrorType.OAUTH_TOKEN_REVOKED)
    source = connectors.source("connector-1")
    assert source["status"] == Status.ERROR.value
    assert source["error_type"] == "oauth_token_revoked"

    await connector.sync_succeeded()
    source = connectors.source("connector-1")
    assert source["status"] == Status.CONNECTED.value
    assert source["last_sync_status"] == SyncStatus.SUCCEEDED.value
    assert source["error_type"] is None
    assert connector.last_sync_success_time == datetime(
        2024, 3, 1, 10, tzinfo=timezone.utc
    )


@pytest.mark.asyncio
@freeze_time("2024-03-01 10:00:00")
async def test_gc_finished(connectors):
    connector = await connectors.get("connector-1")

    await connector.gc_finished()

    reloaded = await connectors.get("connector-1")
    assert reloaded.last_gc_time == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_heartbeat_only_when_stale(connectors):
    connector = await connectors.get("connector-1")

    with freeze_time("2024-03-01 10:00:00"):
        await connector.heartbeat(interval=60)
    first = connectors.source("connector-1")["last_seen"]

    connector = await connectors.get("connector-1")
    with freeze_time("2024-03-01 10:00:30"):
        await connector.heartbeat(interval=60)
    assert connectors.source("connector-1")["last_seen"] == first

    with freeze_time("2024-03-01 10:02:00"):
        await connector.heartbeat(interval=60)
    assert connectors.source("connector-1")["last_seen"] != first

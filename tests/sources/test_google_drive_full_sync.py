#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import pytest

from dust_connectors.exceptions import ExternalOauthTokenError, InternalRemoteError
from dust_connectors.sources.google_drive.context import Generation
from dust_connectors.sources.google_drive.full_sync import (
    full_sync,
    mark_folder_as_visited,
)
from tests.fake_google_drive import MY_DRIVE_ID, add_connector, make_context


@pytest.fixture
def tree(drive):
    # F1 -> doc1, F2 -> doc2
    drive.add_folder("F1")
    drive.add_file("doc1", parent="F1")
    drive.add_folder("F2", parent="F1")
    drive.add_file("doc2", parent="F2")
    return drive


@pytest.mark.asyncio
async def test_full_sync_walks_one_folder_at_a_time(ctx, tree):
    await add_connector(ctx, folder_ids=["F1"])
    generation = Generation()

    result = await full_sync(ctx, "connector-1", "F1", generation)

    assert result.count == 1
    assert result.subfolders == ["F2"]
    assert result.next_page_token is None
    assert await ctx.mirror.visited_in_generation("connector-1", "F1", generation.id)
    assert not await ctx.mirror.visited_in_generation(
        "connector-1", "F2", generation.id
    )

    result = await full_sync(ctx, "connector-1", "F2", generation)

    assert result.count == 1
    assert result.subfolders == []
    assert sorted(ctx.sink.docs) == ["gdrive-doc1", "gdrive-doc2"]
    assert ctx.sink.source("gdrive-doc2")["parents"] == [
        "doc2",
        "F2",
        "F1",
        MY_DRIVE_ID,
    ]
    assert sorted(ctx.mirror.docs) == [
        "connector-1:F1",
        "connector-1:F2",
        "connector-1:doc1",
        "connector-1:doc2",
    ]


@pytest.mark.asyncio
async def test_full_sync_paginates_children(tree):
    ctx = make_context(client=tree, children_page_size=1)
    await add_connector(ctx, folder_ids=["F1"])
    generation = Generation()

    first = await full_sync(ctx, "connector-1", "F1", generation)
    assert first.next_page_token == "1"
    # the folder is visited once its last page is processed
    assert not await ctx.mirror.visited_in_generation(
        "connector-1", "F1", generation.id
    )

    second = await full_sync(
        ctx, "connector-1", "F1", generation, page_token=first.next_page_token
    )
    assert second.next_page_token is None
    assert first.count + second.count == 1
    assert first.subfolders + second.subfolders == ["F2"]
    assert await ctx.mirror.visited_in_generation("connector-1", "F1", generation.id)


@pytest.mark.asyncio
async def test_full_sync_skips_folders_visited_in_generation(ctx, tree):
    await add_connector(ctx, folder_ids=["F1"])
    generation = Generation()
    await full_sync(ctx, "connector-1", "F1", generation)
    calls = len(tree.calls)

    again = await full_sync(ctx, "connector-1", "F1", generation)

    assert again.count == 0
    assert again.subfolders == []
    assert len(tree.calls) == calls

    listed = tree.count_calls("list_children_page", "F1")
    await full_sync(ctx, "connector-1", "F1", Generation())
    assert tree.count_calls("list_children_page", "F1") == listed + 1


@pytest.mark.asyncio
async def test_full_sync_missing_folder(ctx, tree):
    await add_connector(ctx, folder_ids=["gone"])

    result = await full_sync(ctx, "connector-1", "gone", Generation())

    assert result.count == 0
    assert result.next_page_token is None
    assert ctx.mirror.docs == {}


@pytest.mark.asyncio
async def test_full_sync_isolates_file_failures(ctx, tree):
    tree.add_file("doc3", parent="F1")
    tree.errors[("export", "doc1")] = InternalRemoteError("boom", 500)
    await add_connector(ctx, folder_ids=["F1"])

    result = await full_sync(ctx, "connector-1", "F1", Generation())

    assert result.count == 1
    assert list(ctx.sink.docs) == ["gdrive-doc3"]
    assert result.subfolders == ["F2"]


@pytest.mark.asyncio
async def test_full_sync_raises_authorization_errors(ctx, tree):
    tree.errors[("export", "doc1")] = ExternalOauthTokenError("revoked", 401)
    await add_connector(ctx, folder_ids=["F1"])

    with pytest.raises(ExternalOauthTokenError):
        await full_sync(ctx, "connector-1", "F1", Generation())


@pytest.mark.asyncio
async def test_full_sync_drops_trashed_children(ctx, tree):
    await add_connector(ctx, folder_ids=["F1"])
    await full_sync(ctx, "connector-1", "F1", Generation())
    tree.trash("doc1")

    # trashed children are filtered out by the listing, the garbage
    # collector takes care of them
    result = await full_sync(ctx, "connector-1", "F1", Generation())
    assert result.count == 0


@pytest.mark.asyncio
async def test_mark_folder_as_visited(ctx, tree):
    await add_connector(ctx, folder_ids=["F1"])
    generation = Generation()

    assert await mark_folder_as_visited(ctx, "connector-1", "F1", generation)
    assert await ctx.mirror.visited_in_generation("connector-1", "F1", generation.id)
    assert not await mark_folder_as_visited(ctx, "connector-1", "gone", generation)

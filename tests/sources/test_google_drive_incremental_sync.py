#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import pytest
import pytest_asyncio

from dust_connectors.exceptions import (
    ExternalOauthTokenError,
    InvalidRemoteObjectError,
    PermanentRemoteError,
    RateLimitError,
)
from dust_connectors.sources.google_drive.context import Generation
from dust_connectors.sources.google_drive.full_sync import full_sync
from dust_connectors.sources.google_drive.incremental_sync import (
    get_sync_page_token,
    incremental_sync,
    populate_sync_tokens,
)
from tests.fake_google_drive import MY_DRIVE_ID, add_connector, make_context


@pytest_asyncio.fixture
async def synced(ctx, drive):
    """F1 -> doc1, F2 -> doc2, fully synced, cursors at the head of the feeds."""
    drive.add_folder("F1")
    drive.add_file("doc1", parent="F1")
    drive.add_folder("F2", parent="F1")
    drive.add_file("doc2", parent="F2")
    drive.add_folder("Other")
    drive.record_change("doc1")
    await add_connector(ctx, folder_ids=["F1"])
    await populate_sync_tokens(ctx, "connector-1")
    generation = Generation()
    await full_sync(ctx, "connector-1", "F1", generation)
    await full_sync(ctx, "connector-1", "F2", generation)
    return ctx


async def _sync_drive(ctx, page_token=None):
    return await incremental_sync(
        ctx, "connector-1", MY_DRIVE_ID, False, Generation(), page_token=page_token
    )


@pytest.mark.asyncio
async def test_populate_sync_tokens(ctx, drive):
    drive.add_shared_drive("shared-1", "Team")
    drive.record_change(MY_DRIVE_ID)
    await add_connector(ctx)

    assert await populate_sync_tokens(ctx, "connector-1") == 2

    assert await ctx.sync_tokens.get("connector-1", MY_DRIVE_ID) == "1"
    assert await ctx.sync_tokens.get("connector-1", "shared-1") == "0"


@pytest.mark.asyncio
async def test_get_sync_page_token_prefers_persisted_cursor(ctx, drive):
    await add_connector(ctx)
    drive.record_change(MY_DRIVE_ID)

    assert await get_sync_page_token(ctx, "connector-1", MY_DRIVE_ID, False) == "1"

    await ctx.sync_tokens.upsert("connector-1", MY_DRIVE_ID, "0")
    assert await get_sync_page_token(ctx, "connector-1", MY_DRIVE_ID, False) == "0"


@pytest.mark.asyncio
async def test_trashed_file_is_deleted(synced, drive):
    drive.trash("doc1")
    drive.record_change("doc1")

    assert await _sync_drive(synced) is None

    assert await synced.mirror.get("connector-1", "doc1") is None
    assert synced.sink.source("gdrive-doc1") is None
    assert synced.sink.source("gdrive-doc2") is not None
    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "2"


@pytest.mark.asyncio
async def test_changes_before_the_cursor_are_not_replayed(synced, drive):
    # doc1 was trashed before the full sync started, the cursor is past it
    drive.feeds[MY_DRIVE_ID][0]["file"]["trashed"] = True

    await _sync_drive(synced)

    assert synced.sink.source("gdrive-doc1") is not None
    assert drive.count_calls("list_changes_page") == 1


@pytest.mark.asyncio
async def test_new_file_in_scope_is_synced(synced, drive):
    drive.add_file("doc3", parent="F2", content="new content")
    drive.add_file("outside", parent="Other")
    drive.record_change("doc3")
    drive.record_change("outside")

    await _sync_drive(synced)

    assert synced.sink.source("gdrive-doc3")["body"] == "new content"
    assert synced.sink.source("gdrive-outside") is None
    assert await synced.mirror.get("connector-1", "outside") is None


@pytest.mark.asyncio
async def test_file_moved_out_of_scope_is_deleted(synced, drive):
    drive.move("doc2", "Other")
    drive.record_change("doc2")

    await _sync_drive(synced)

    assert synced.sink.source("gdrive-doc2") is None
    assert await synced.mirror.get("connector-1", "doc2") is None


@pytest.mark.asyncio
async def test_new_folder_is_mirrored(synced, drive):
    drive.add_folder("F3", parent="F1")
    drive.record_change("F3")

    await _sync_drive(synced)

    assert (await synced.mirror.get("connector-1", "F3")).name == "F3"


@pytest.mark.asyncio
async def test_irrelevant_changes_are_ignored(synced, drive):
    drive.add_file("image", parent="F1", mime_type="image/png")
    drive.record_change("image")
    drive.record_change(MY_DRIVE_ID, change_type="drive")
    drive.feeds[MY_DRIVE_ID].append({"changeType": "file", "fileId": "x", "removed": True})

    assert await _sync_drive(synced) is None

    assert await synced.mirror.get("connector-1", "image") is None
    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "4"


@pytest.mark.asyncio
async def test_invalid_file_in_scope(synced, drive):
    drive.add_file("doc3", parent="F1")
    drive.record_change("doc3")
    drive.feeds[MY_DRIVE_ID][-1]["file"]["name"] = None

    with pytest.raises(InvalidRemoteObjectError):
        await _sync_drive(synced)

    # the page is retried as a whole, the cursor did not move
    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "1"


@pytest.mark.asyncio
async def test_cursor_moves_forward_page_by_page(drive):
    ctx = make_context(client=drive, changes_page_size=2)
    drive.add_folder("F1")
    await add_connector(ctx, folder_ids=["F1"])
    await populate_sync_tokens(ctx, "connector-1")
    for i in range(3):
        drive.add_file(f"doc{i}", parent="F1")
        drive.record_change(f"doc{i}")

    next_page_token = await _sync_drive(ctx)
    assert next_page_token == "2"
    assert await ctx.sync_tokens.get("connector-1", MY_DRIVE_ID) == "2"

    assert await _sync_drive(ctx, page_token=next_page_token) is None
    assert await ctx.sync_tokens.get("connector-1", MY_DRIVE_ID) == "3"
    assert sorted(ctx.sink.docs) == ["gdrive-doc0", "gdrive-doc1", "gdrive-doc2"]


@pytest.mark.asyncio
async def test_lost_access_to_drive(synced, drive):
    drive.errors["list_changes_page"] = PermanentRemoteError("forbidden", 403)

    assert await _sync_drive(synced) is None
    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "1"


@pytest.mark.asyncio
async def test_other_remote_errors_propagate(synced, drive):
    drive.errors["list_changes_page"] = PermanentRemoteError("bad request", 400)

    with pytest.raises(PermanentRemoteError):
        await _sync_drive(synced)


@pytest.mark.asyncio
async def test_rate_limited_as_403_is_retried(synced, drive):
    drive.errors["list_changes_page"] = RateLimitError(
        "User Rate Limit Exceeded", 403
    )

    with pytest.raises(RateLimitError):
        await _sync_drive(synced)

    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "1"


@pytest.mark.asyncio
async def test_failing_file_does_not_block_the_feed(synced, drive, patch_logger):
    drive.add_file("bad", parent="F1")
    drive.add_file("good", parent="F1", content="good content")
    drive.record_change("bad")
    drive.record_change("good")
    drive.errors[("export", "bad")] = PermanentRemoteError("cannot export", 400)

    assert await _sync_drive(synced) is None

    assert synced.sink.source("gdrive-bad") is None
    assert synced.sink.source("gdrive-good")["body"] == "good content"
    assert await synced.mirror.get("connector-1", "good") is not None
    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "3"
    patch_logger.assert_present(
        "Failed to sync file bad: PermanentRemoteError('cannot export')"
    )


@pytest.mark.asyncio
async def test_revoked_token_while_applying_changes(synced, drive):
    drive.add_file("doc3", parent="F1")
    drive.record_change("doc3")
    drive.errors[("export", "doc3")] = ExternalOauthTokenError("revoked", 401)

    with pytest.raises(ExternalOauthTokenError):
        await _sync_drive(synced)

    assert await synced.sync_tokens.get("connector-1", MY_DRIVE_ID) == "1"

#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Content sync and deletion of a single Drive object.
"""
from dust_connectors.protocol.google_drive import get_document_id
from dust_connectors.sources.google_drive.hierarchy import get_file_parents
from dust_connectors.sources.google_drive.mime_types import (
    MIME_TYPES_TO_DOWNLOAD,
    MIME_TYPES_TO_EXPORT,
    PDF_MIME_TYPE,
    is_folder,
)
from dust_connectors.utils import get_base64_value, iso_utc, utc_now


def _as_text(content):
    if content is None:
        return ""
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return f"{content}"


def _as_bytes(content):
    if isinstance(content, bytes):
        return content
    return _as_text(content).encode("utf-8")


def _ms(when):
    return int(when.timestamp() * 1000) if when else None


async def get_file_content(ctx, client, file, log):
    """Text of the file, or a dict with a base64 `_attachment` for binaries.

    Returns None when the file has no content we can push (unsupported
    type, empty, or bigger than `max_file_size`).
    """
    max_file_size = ctx.setting("max_file_size")
    if file.size is not None and file.size > max_file_size:
        log.info(f"File {file.id} is too big to be synced ({file.size} bytes)")
        return None

    if file.mime_type in MIME_TYPES_TO_EXPORT:
        content = _as_text(
            await client.export(file.id, MIME_TYPES_TO_EXPORT[file.mime_type])
        )
    elif file.mime_type in MIME_TYPES_TO_DOWNLOAD:
        content = _as_text(await client.download(file.id))
    elif file.mime_type == PDF_MIME_TYPE:
        payload = _as_bytes(await client.download(file.id))
        if len(payload) > max_file_size:
            log.info(f"File {file.id} is too big to be synced ({len(payload)} bytes)")
            return None
        return {"_attachment": get_base64_value(payload)} if payload else None
    else:
        log.debug(f"Unsupported mime type {file.mime_type} for file {file.id}")
        return None

    if not content.strip():
        return None
    if len(content.encode("utf-8")) > max_file_size:
        log.info(f"File {file.id} is too big to be synced once exported")
        return None
    return content


def file_metadata(file, parents):
    tags = [f"title:{file.name}"]
    if file.created_time is not None:
        tags.append(f"createdAt:{_ms(file.created_time)}")
    if file.updated_time is not None:
        tags.append(f"updatedAt:{_ms(file.updated_time)}")
    if file.last_editor:
        tags.append(f"lastEditor:{file.last_editor}")
    return {
        "title": file.name,
        "mime_type": file.mime_type,
        "drive_file_id": file.id,
        "drive_id": file.drive_id,
        "created_at": iso_utc(file.created_time) if file.created_time else None,
        "updated_at": iso_utc(file.updated_time) if file.updated_time else None,
        "url": file.web_view_link,
        "parents": parents,
        "tags": tags,
    }


async def upsert_folder(ctx, connector_id, folder, **fields):
    """Folders are only mirrored, they have no content downstream."""
    await ctx.mirror.upsert(
        connector_id,
        folder.id,
        name=folder.name,
        mime_type=folder.mime_type,
        parent_id=folder.parent,
        last_seen_ts=utc_now(),
        **fields,
    )


async def sync_one_file(
    ctx, connector, client, file, parents_cache, log, is_batch_sync=False
):
    """Pushes the content of `file` downstream and mirrors it.

    During batch syncs, files not modified since their last push only get
    their `last_seen_ts` refreshed.

    Returns:
        bool: True if content was pushed downstream
    """
    if is_folder(file.mime_type):
        await upsert_folder(ctx, connector.id, file)
        return False

    if is_batch_sync and file.updated_time is not None:
        mirrored = await ctx.mirror.get(connector.id, file.id)
        if (
            mirrored is not None
            and mirrored.last_upserted_ts is not None
            and file.updated_time <= mirrored.last_upserted_ts
        ):
            log.debug(f"File {file.id} is up to date, skipping content")
            await ctx.mirror.upsert(
                connector.id,
                file.id,
                name=file.name,
                mime_type=file.mime_type,
                parent_id=file.parent,
                last_seen_ts=utc_now(),
            )
            return False

    fields = {}
    content = await get_file_content(ctx, client, file, log)
    if content is not None:
        parents = await get_file_parents(client, file, parents_cache)
        await ctx.sink.upsert(
            get_document_id(file.id), content, file_metadata(file, parents)
        )
        fields["last_upserted_ts"] = utc_now()

    await ctx.mirror.upsert(
        connector.id,
        file.id,
        name=file.name,
        mime_type=file.mime_type,
        parent_id=file.parent,
        last_seen_ts=utc_now(),
        **fields,
    )
    return content is not None


async def delete_file(ctx, mirrored, log):
    """Removes a mirrored object, and its downstream document for files."""
    log.info(f"Deleting Google Drive file {mirrored.drive_file_id}")
    if not is_folder(mirrored.mime_type):
        await ctx.sink.delete(mirrored.dust_file_id)
    await ctx.mirror.delete_object(mirrored.connector_id, mirrored.drive_file_id)


async def delete_one_file(ctx, connector_id, drive_file_id, log):
    """Deletes the local copy of `drive_file_id`, only if we were syncing it.

    Returns:
        bool: True if something was deleted
    """
    mirrored = await ctx.mirror.get(connector_id, drive_file_id)
    if mirrored is None:
        return False
    await delete_file(ctx, mirrored, log)
    return True

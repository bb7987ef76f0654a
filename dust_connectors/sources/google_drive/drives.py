#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
from dust_connectors.exceptions import InvalidRemoteObjectError
from dust_connectors.sources.google_drive.client import Drive


async def get_folders_to_sync(ctx, connector_id):
    return await ctx.folders.folder_ids(connector_id)


async def get_drives(ctx, connector_id):
    """Every drive the connector can see, "My Drive" included."""
    connector = await ctx.get_connector(connector_id)
    return await ctx.client_for(connector).list_drives()


async def get_drives_to_sync(ctx, connector_id):
    """Drives holding at least one watched folder.

    Watched folders which are not visible anymore are ignored.
    """
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    drives = {}
    for folder_id in await get_folders_to_sync(ctx, connector_id):
        remote_folder = await client.get_object(folder_id)
        if remote_folder is None:
            continue
        if not remote_folder.drive_id:
            msg = f"Folder {folder_id} does not have a driveId."
            raise InvalidRemoteObjectError(msg)
        drives[remote_folder.drive_id] = Drive(
            id=remote_folder.drive_id,
            name=remote_folder.name,
            is_shared_drive=remote_folder.is_in_shared_drive,
        )
    return list(drives.values())


async def folder_has_children(ctx, connector_id, folder_id):
    connector = await ctx.get_connector(connector_id)
    return await ctx.client_for(connector).folder_has_children(folder_id)

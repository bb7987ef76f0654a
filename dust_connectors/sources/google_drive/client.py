#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Google Drive API client and canonical representation of Drive objects.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from dust_connectors.exceptions import InvalidRemoteObjectError, RemoteNotFoundError
from dust_connectors.sources.google import (
    GoogleServiceAccountClient,
    load_service_account_json,
    remove_universe_domain,
)
from dust_connectors.sources.google_drive.mime_types import (
    FOLDER_MIME_TYPE,
    is_folder,
)
from dust_connectors.utils import parse_datetime_string

DRIVE_API_TIMEOUT = 1 * 60  # 1 min

FILE_ATTRIBUTES_TO_FETCH = [
    "id",
    "name",
    "mimeType",
    "parents",
    "createdTime",
    "modifiedTime",
    "trashed",
    "driveId",
    "size",
    "webViewLink",
    "lastModifyingUser",
]
FILE_FIELDS = ",".join(FILE_ATTRIBUTES_TO_FETCH)

MY_DRIVE_NAME = "My Drive"


def _params(**kwargs):
    return {key: value for key, value in kwargs.items() if value is not None}


def _parse_ts(value):
    return parse_datetime_string(value) if value else None


@dataclass
class DriveObject:
    """A file or a folder, as the sync engine sees it."""

    id: str  # noqa: A003
    name: Optional[str]
    mime_type: Optional[str]
    parent: Optional[str] = None
    parents: List[str] = field(default_factory=list)
    trashed: bool = False
    created_time: Optional[datetime] = None
    updated_time: Optional[datetime] = None
    drive_id: Optional[str] = None
    is_in_shared_drive: bool = False
    size: Optional[int] = None
    web_view_link: Optional[str] = None
    last_editor: Optional[str] = None

    @property
    def is_folder(self):
        return is_folder(self.mime_type)

    @classmethod
    def from_api(cls, raw, my_drive_id=None):
        """Translates a `files` resource of the Drive API.

        Files outside shared drives have no `driveId`, they belong to the
        "My Drive" of the authenticated user.
        """
        parents = raw.get("parents") or []
        size = raw.get("size")
        return cls(
            id=raw["id"],
            name=raw.get("name"),
            mime_type=raw.get("mimeType"),
            parent=parents[0] if parents else None,
            parents=list(parents),
            trashed=raw.get("trashed", False),
            created_time=_parse_ts(raw.get("createdTime")),
            updated_time=_parse_ts(raw.get("modifiedTime")),
            drive_id=raw.get("driveId") or my_drive_id,
            is_in_shared_drive=bool(raw.get("driveId")),
            size=int(size) if size is not None else None,
            web_view_link=raw.get("webViewLink"),
            last_editor=(raw.get("lastModifyingUser") or {}).get("displayName"),
        )


@dataclass
class Drive:
    id: str  # noqa: A003
    name: str
    is_shared_drive: bool


@dataclass
class ChangesPage:
    changes: List[dict]
    next_page_token: Optional[str] = None
    new_start_page_token: Optional[str] = None


class GoogleDriveClient(GoogleServiceAccountClient):
    """A google drive client to handle api calls made to Google Drive API."""

    def __init__(self, json_credentials, subject=None, timeout=DRIVE_API_TIMEOUT):
        """Initialize the GoogleApiClient superclass.

        Args:
            json_credentials (dict or str): Service account credentials json.
            subject (str): Workspace user to impersonate (domain-wide delegation).
        """
        json_credentials = load_service_account_json(json_credentials)
        remove_universe_domain(json_credentials)
        if subject:
            json_credentials["subject"] = subject

        super().__init__(
            json_credentials=json_credentials,
            api="drive",
            api_version="v3",
            scopes=[
                "https://www.googleapis.com/auth/drive.readonly",
                "https://www.googleapis.com/auth/drive.metadata.readonly",
            ],
            api_timeout=timeout,
        )
        self._my_drive_id = None

    async def ping(self):
        return await self.api_call(resource="about", method="get", fields="kind")

    async def my_drive_id(self):
        if self._my_drive_id is None:
            root = await self.api_call(
                resource="files", method="get", fileId="root", fields="id"
            )
            self._my_drive_id = root["id"]
        return self._my_drive_id

    async def to_drive_object(self, raw):
        my_drive_id = None if raw.get("driveId") else await self.my_drive_id()
        return DriveObject.from_api(raw, my_drive_id=my_drive_id)

    async def get_object(self, object_id):
        """Fetches a file, a folder or a shared drive root.

        Returns:
            DriveObject: the object, None if it does not exist or is not visible anymore.
        """
        try:
            raw = await self.api_call(
                resource="files",
                method="get",
                fileId=object_id,
                supportsAllDrives=True,
                fields=FILE_FIELDS,
            )
        except RemoteNotFoundError:
            return None
        return await self.to_drive_object(raw)

    async def list_drives(self):
        """Lists "My Drive" followed by every shared drive visible to the connector."""
        drives = [
            Drive(id=await self.my_drive_id(), name=MY_DRIVE_NAME, is_shared_drive=False)
        ]
        page_token = None
        while True:
            page = await self.api_call(
                resource="drives",
                method="list",
                **_params(
                    pageSize=100,
                    fields="nextPageToken,drives(id,name)",
                    pageToken=page_token,
                ),
            )
            for drive in page.get("drives", []):
                if drive.get("id") and drive.get("name"):
                    drives.append(
                        Drive(id=drive["id"], name=drive["name"], is_shared_drive=True)
                    )
            page_token = page.get("nextPageToken")
            if not page_token:
                return drives

    async def list_children_page(self, folder_id, mime_types, page_token=None, page_size=200):
        """One page of the non-trashed children of `folder_id` with a syncable MIME type.

        Returns:
            tuple: (list of DriveObject, next page token or None)
        """
        mime_types_query = " or ".join(
            f"mimeType='{mime_type}'" for mime_type in mime_types
        )
        page = await self.api_call(
            resource="files",
            method="list",
            **_params(
                corpora="allDrives",
                pageSize=page_size,
                includeItemsFromAllDrives=True,
                supportsAllDrives=True,
                fields=f"nextPageToken,files({FILE_FIELDS})",
                q=f"'{folder_id}' in parents and ({mime_types_query}) and trashed=false",
                pageToken=page_token,
            ),
        )
        if page.get("files") is None:
            msg = f"Files list of folder {folder_id} is undefined"
            raise InvalidRemoteObjectError(msg)

        files = []
        for raw in page["files"]:
            if not raw.get("id") or not raw.get("createdTime"):
                continue
            if not raw.get("name") or not raw.get("mimeType"):
                msg = f"Invalid file. File is: {raw}"
                raise InvalidRemoteObjectError(msg)
            files.append(await self.to_drive_object(raw))
        return files, page.get("nextPageToken") or None

    async def folder_has_children(self, folder_id):
        page = await self.api_call(
            resource="files",
            method="list",
            corpora="allDrives",
            pageSize=1,
            includeItemsFromAllDrives=True,
            supportsAllDrives=True,
            fields="nextPageToken,files(id)",
            q=f"'{folder_id}' in parents and mimeType='{FOLDER_MIME_TYPE}'",
        )
        if page.get("files") is None:
            msg = f"Files list of folder {folder_id} is undefined"
            raise InvalidRemoteObjectError(msg)
        return len(page["files"]) > 0

    def _drive_params(self, drive_id, is_shared_drive):
        if not is_shared_drive:
            return {}
        return {"driveId": drive_id, "supportsAllDrives": True}

    async def get_start_page_token(self, drive_id, is_shared_drive):
        res = await self.api_call(
            resource="changes",
            method="getStartPageToken",
            **self._drive_params(drive_id, is_shared_drive),
        )
        if not res.get("startPageToken"):
            msg = f"No start page token found for drive {drive_id}"
            raise InvalidRemoteObjectError(msg)
        return res["startPageToken"]

    async def list_changes_page(self, page_token, drive_id, is_shared_drive, page_size=100):
        params = {"pageToken": page_token, "pageSize": page_size, "fields": "*"}
        if is_shared_drive:
            params.update(
                self._drive_params(drive_id, is_shared_drive),
                includeItemsFromAllDrives=True,
            )
        res = await self.api_call(resource="changes", method="list", **params)
        if res.get("changes") is None:
            msg = "changes list is undefined"
            raise InvalidRemoteObjectError(msg)
        return ChangesPage(
            changes=res["changes"],
            next_page_token=res.get("nextPageToken") or None,
            new_start_page_token=res.get("newStartPageToken") or None,
        )

    async def watch_changes(
        self, channel_id, address, expiration_ms, drive_id, is_shared_drive
    ):
        """Subscribes `address` to the change feed of a drive.

        Returns:
            dict: `resourceId` and `expiration` (epoch ms) of the channel.
        """
        page_token = await self.get_start_page_token(drive_id, is_shared_drive)
        return await self.api_call(
            resource="changes",
            method="watch",
            pageToken=page_token,
            json={
                "id": channel_id,
                "type": "web_hook",
                "address": address,
                "expiration": expiration_ms,
            },
            **self._drive_params(drive_id, is_shared_drive),
        )

    async def stop_channel(self, channel_id, resource_id):
        await self.api_call(
            resource="channels",
            method="stop",
            json={"id": channel_id, "resourceId": resource_id},
        )

    async def export(self, file_id, mime_type):
        return await self.api_call(
            resource="files", method="export", fileId=file_id, mimeType=mime_type
        )

    async def download(self, file_id):
        return await self.api_call(
            resource="files",
            method="get",
            fileId=file_id,
            supportsAllDrives=True,
            alt="media",
        )

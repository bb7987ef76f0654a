#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
State kept by the Google Drive connector.

- MirroredObjectIndex: one document per remote file or folder we synced
- WatchedFolderIndex: the folders selected by the user
- SyncTokenIndex: change-feed cursor per (connector, drive)
- WebhookIndex: change-feed subscriptions (push channels)

Every document id is derived from its natural key, so writes are keyed
upserts and concurrent writers converge on the same document.
"""
from datetime import datetime, timedelta, timezone

from dust_connectors.es import ESDocument, ESIndex
from dust_connectors.es.index import keyword_mappings
from dust_connectors.utils import iso_utc, to_datetime, utc_now

MIRRORED_OBJECTS_INDEX = ".dust-gdrive-files"
WATCHED_FOLDERS_INDEX = ".dust-gdrive-folders"
SYNC_TOKENS_INDEX = ".dust-gdrive-sync-tokens"
WEBHOOKS_INDEX = ".dust-gdrive-webhooks"

DATE_SORT = {"order": "asc", "missing": "_first", "unmapped_type": "date"}


def get_document_id(drive_file_id):
    """Canonical downstream document id of a Drive file."""
    return f"gdrive-{drive_file_id}"


def _key(connector_id, remote_id):
    return f"{connector_id}:{remote_id}"


class MirroredObject(ESDocument):
    @property
    def connector_id(self):
        return self.get("connector_id")

    @property
    def drive_file_id(self):
        return self.get("drive_file_id")

    @property
    def dust_file_id(self):
        return self.get("dust_file_id")

    @property
    def name(self):
        return self.get("name")

    @property
    def mime_type(self):
        return self.get("mime_type")

    @property
    def parent_id(self):
        return self.get("parent_id")

    @property
    def last_seen_ts(self):
        return to_datetime(self.get("last_seen_ts"))

    @property
    def last_upserted_ts(self):
        return to_datetime(self.get("last_upserted_ts"))

    @property
    def visited_generation(self):
        return self.get("visited_generation")

    def _prefix(self):
        return f"[Connector id: {self.connector_id}, file: {self.drive_file_id}]"

    def _extra(self):
        return {
            "labels.connector_id": self.connector_id,
            "labels.drive_file_id": self.drive_file_id,
        }


class MirroredObjectIndex(ESIndex):
    MAPPINGS = keyword_mappings("last_seen_ts", "last_upserted_ts")

    def __init__(self, elastic_config, index_name=MIRRORED_OBJECTS_INDEX):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return MirroredObject(self, doc_source)

    async def get(self, connector_id, drive_file_id):
        return await self.find_by_id(_key(connector_id, drive_file_id))

    async def upsert(self, connector_id, drive_file_id, **fields):
        """Creates or updates the mirror of `drive_file_id`.

        `last_seen_ts` defaults to now. Datetimes are stored in ISO format.
        """
        doc = {
            "connector_id": connector_id,
            "drive_file_id": drive_file_id,
            "dust_file_id": get_document_id(drive_file_id),
            "last_seen_ts": utc_now(),
        }
        doc.update(fields)
        for key, value in doc.items():
            if isinstance(value, datetime):
                doc[key] = iso_utc(value)
        await self.upsert_doc(_key(connector_id, drive_file_id), doc)

    async def touch(self, connector_id, drive_file_id, when=None):
        await self.update(
            doc_id=_key(connector_id, drive_file_id),
            doc={"last_seen_ts": iso_utc(when)},
        )

    async def delete_object(self, connector_id, drive_file_id):
        return await self.delete(_key(connector_id, drive_file_id))

    async def visited_in_generation(self, connector_id, drive_file_id, generation_id):
        mirrored = await self.get(connector_id, drive_file_id)
        return mirrored is not None and mirrored.visited_generation == generation_id

    async def stale_objects(self, connector_id, cutoff, limit):
        """Objects not seen since `cutoff`, or never seen at all."""
        query = {
            "bool": {
                "filter": [{"term": {"connector_id": connector_id}}],
                "should": [
                    {"range": {"last_seen_ts": {"lt": iso_utc(cutoff)}}},
                    {"bool": {"must_not": {"exists": {"field": "last_seen_ts"}}}},
                ],
                "minimum_should_match": 1,
            }
        }
        return await self.search(
            query=query, sort=[{"last_seen_ts": DATE_SORT}], size=limit
        )


class WatchedFolderIndex(ESIndex):
    MAPPINGS = keyword_mappings()

    def __init__(self, elastic_config, index_name=WATCHED_FOLDERS_INDEX):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return ESDocument(self, doc_source)

    async def add(self, connector_id, folder_id):
        await self.upsert_doc(
            _key(connector_id, folder_id),
            {"connector_id": connector_id, "folder_id": folder_id},
        )

    async def remove(self, connector_id, folder_id):
        return await self.delete(_key(connector_id, folder_id))

    async def folder_ids(self, connector_id):
        query = {"term": {"connector_id": connector_id}}
        return [
            folder.get("folder_id")
            async for folder in self.get_all_docs(query=query, sort=["folder_id"])
        ]


class SyncTokenIndex(ESIndex):
    MAPPINGS = keyword_mappings("updated_at")

    def __init__(self, elastic_config, index_name=SYNC_TOKENS_INDEX):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return ESDocument(self, doc_source)

    async def get(self, connector_id, drive_id):
        doc = await self.find_by_id(_key(connector_id, drive_id))
        if doc is None:
            return None
        return doc.get("sync_token")

    async def upsert(self, connector_id, drive_id, sync_token):
        await self.upsert_doc(
            _key(connector_id, drive_id),
            {
                "connector_id": connector_id,
                "drive_id": drive_id,
                "sync_token": sync_token,
                "updated_at": iso_utc(),
            },
        )


class Webhook(ESDocument):
    @property
    def webhook_id(self):
        return self.id

    @property
    def connector_id(self):
        return self.get("connector_id")

    @property
    def drive_id(self):
        return self.get("drive_id")

    @property
    def is_shared_drive(self):
        return self.get("is_shared_drive", default=False)

    @property
    def resource_id(self):
        return self.get("resource_id")

    @property
    def expires_at(self):
        return to_datetime(self.get("expires_at"))

    @property
    def renew_at(self):
        return to_datetime(self.get("renew_at"))

    @property
    def renewed_by_webhook_id(self):
        return self.get("renewed_by_webhook_id")

    def is_expired(self, now=None):
        return self.expires_at is not None and self.expires_at < (now or utc_now())

    def is_active(self, now=None):
        return self.renewed_by_webhook_id is None and not self.is_expired(now)

    def _prefix(self):
        return f"[Connector id: {self.connector_id}, webhook: {self.id}]"

    def _extra(self):
        return {
            "labels.connector_id": self.connector_id,
            "labels.webhook_id": self.id,
            "labels.drive_id": self.drive_id,
        }


class WebhookIndex(ESIndex):
    MAPPINGS = keyword_mappings("expires_at", "renew_at", "created_at")

    def __init__(self, elastic_config, index_name=WEBHOOKS_INDEX):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return Webhook(self, doc_source)

    async def create(
        self,
        webhook_id,
        connector_id,
        drive_id,
        expires_at,
        renew_at,
        resource_id=None,
        is_shared_drive=False,
    ):
        await self.index(
            {
                "connector_id": connector_id,
                "drive_id": drive_id,
                "is_shared_drive": is_shared_drive,
                "resource_id": resource_id,
                "expires_at": iso_utc(expires_at),
                "renew_at": iso_utc(renew_at),
                "renewed_by_webhook_id": None,
                "created_at": iso_utc(),
            },
            doc_id=webhook_id,
        )

    async def get(self, webhook_id):
        return await self.find_by_id(webhook_id)

    async def active_for_drive(self, connector_id, drive_id, renew_after):
        """Non-superseded subscription of the drive which does not need renewal before `renew_after`."""
        query = {
            "bool": {
                "filter": [
                    {"term": {"connector_id": connector_id}},
                    {"term": {"drive_id": drive_id}},
                    {"range": {"renew_at": {"gt": iso_utc(renew_after)}}},
                ],
                "must_not": [{"exists": {"field": "renewed_by_webhook_id"}}],
            }
        }
        webhooks = await self.search(query=query, size=1)
        return webhooks[0] if webhooks else None

    async def for_connector(self, connector_id):
        query = {"term": {"connector_id": connector_id}}
        return [webhook async for webhook in self.get_all_docs(query=query)]

    async def expiring(self, lookahead, limit, now=None):
        """Non-superseded subscriptions due for renewal within `lookahead`."""
        now = now or utc_now()
        query = {
            "bool": {
                "filter": [
                    {"range": {"renew_at": {"lt": iso_utc(now + lookahead)}}},
                ],
                "must_not": [{"exists": {"field": "renewed_by_webhook_id"}}],
            }
        }
        return await self.search(
            query=query, sort=[{"renew_at": DATE_SORT}], size=limit
        )

    async def mark_renewed(self, webhook_id, renewed_by_webhook_id):
        await self.update(
            doc_id=webhook_id, doc={"renewed_by_webhook_id": renewed_by_webhook_id}
        )

    async def postpone(self, webhook_id, delay: timedelta):
        await self.update(
            doc_id=webhook_id,
            doc={"renew_at": iso_utc(datetime.now(timezone.utc) + delay)},
        )

    async def delete_webhook(self, webhook_id):
        return await self.delete(webhook_id)

    async def purge_expired_renewed(self, retention: timedelta, limit):
        """Deletes superseded subscriptions expired for longer than `retention`."""
        query = {
            "bool": {
                "filter": [
                    {
                        "range": {
                            "expires_at": {"lt": iso_utc(utc_now() - retention)}
                        }
                    },
                    {"exists": {"field": "renewed_by_webhook_id"}},
                ],
            }
        }
        webhooks = await self.search(query=query, size=limit)
        for webhook in webhooks:
            await self.delete(webhook.id)
        return len(webhooks)

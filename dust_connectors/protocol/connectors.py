#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Connectors registry.

- ConnectorIndex: represents a document in `.dust-connectors`
- Connector: one Google Drive connection of a Dust workspace

"""
import json
from datetime import datetime, timezone
from enum import Enum

from dust_connectors.es import ESDocument, ESIndex
from dust_connectors.es.client import with_concurrency_control
from dust_connectors.es.index import keyword_mappings
from dust_connectors.logger import logger
from dust_connectors.utils import iso_utc, to_datetime

__all__ = [
    "CONNECTORS_INDEX",
    "Connector",
    "ConnectorIndex",
    "Status",
    "SyncStatus",
    "SyncErrorType",
]

CONNECTORS_INDEX = ".dust-connectors"
GOOGLE_DRIVE_SERVICE_TYPE = "google_drive"


class Status(Enum):
    CREATED = "created"
    CONNECTED = "connected"
    PAUSED = "paused"
    ERROR = "error"
    UNSET = None


class SyncStatus(Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNSET = None


class SyncErrorType(Enum):
    OAUTH_TOKEN_REVOKED = "oauth_token_revoked"
    THIRD_PARTY_INTERNAL_ERROR = "third_party_internal_error"
    TRANSIENT_ERROR = "transient_error"


class ConnectorIndex(ESIndex):
    MAPPINGS = keyword_mappings(
        "last_seen",
        "last_gc_time",
        "last_sync_start_time",
        "last_sync_success_time",
        "last_sync_finish_time",
        connection={"type": "object", "enabled": False},
    )

    def __init__(self, elastic_config, index_name=CONNECTORS_INDEX):
        logger.debug(f"ConnectorIndex connecting to {elastic_config['host']}")
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return Connector(self, doc_source)

    async def heartbeat(self, doc_id):
        await self.update(doc_id=doc_id, doc={"last_seen": iso_utc()})

    async def get(self, connector_id):
        """Returns the connector `connector_id` or None when it does not exist anymore."""
        return await self.find_by_id(connector_id)

    async def all_connectors(self, connector_ids=None):
        filters = [{"term": {"service_type": GOOGLE_DRIVE_SERVICE_TYPE}}]
        if connector_ids:
            filters.append({"terms": {"_id": connector_ids}})
        async for connector in self.get_all_docs(query={"bool": {"filter": filters}}):
            yield connector


class Connector(ESDocument):
    @property
    def status(self):
        return Status(self.get("status"))

    @property
    def workspace_id(self):
        return self.get("workspace_id")

    @property
    def data_source_id(self):
        return self.get("data_source_id")

    @property
    def pdf_enabled(self):
        return self.get("configuration", "pdf_enabled", default=False)

    @property
    def credentials(self):
        """Service account JSON the connector authenticates with."""
        credentials = self.get("connection", "service_account_credentials")
        if isinstance(credentials, str):
            credentials = json.loads(credentials)
        return dict(credentials or {})

    @property
    def subject(self):
        """Google Workspace user impersonated through domain-wide delegation."""
        return self.get("connection", "subject")

    @property
    def last_sync_status(self):
        return SyncStatus(self.get("last_sync_status"))

    @property
    def error_type(self):
        return self.get("error_type")

    @property
    def last_seen(self):
        return to_datetime(self.get("last_seen"))

    @property
    def last_gc_time(self):
        return to_datetime(self.get("last_gc_time"))

    @property
    def last_sync_success_time(self):
        return to_datetime(self.get("last_sync_success_time"))

    async def heartbeat(self, interval):
        if (
            self.last_seen is None
            or (datetime.now(timezone.utc) - self.last_seen).total_seconds() > interval
        ):
            self.log_debug("Sending heartbeat")
            await self.index.heartbeat(doc_id=self.id)

    @with_concurrency_control()
    async def _update(self, doc):
        await self.reload()
        await self.index.update(
            doc_id=self.id,
            doc=doc,
            if_seq_no=self._seq_no,
            if_primary_term=self._primary_term,
        )
        self._source.update(doc)

    async def sync_started(self):
        await self._update(
            {
                "last_sync_status": SyncStatus.IN_PROGRESS.value,
                "last_sync_start_time": iso_utc(),
            }
        )

    async def sync_succeeded(self):
        now = iso_utc()
        await self._update(
            {
                "status": Status.CONNECTED.value,
                "last_sync_status": SyncStatus.SUCCEEDED.value,
                "last_sync_success_time": now,
                "last_sync_finish_time": now,
                "error_type": None,
            }
        )

    async def sync_failed(self, error_type):
        if isinstance(error_type, SyncErrorType):
            error_type = error_type.value
        self.log_error(f"Sync failed: {error_type}")
        await self._update(
            {
                "status": Status.ERROR.value,
                "last_sync_status": SyncStatus.FAILED.value,
                "last_sync_finish_time": iso_utc(),
                "error_type": error_type,
            }
        )

    async def gc_finished(self):
        await self._update({"last_gc_time": iso_utc()})

    def _prefix(self):
        return f"[Connector id: {self.id}]"

    def _extra(self):
        return {
            "labels.connector_id": self.id,
            "labels.workspace_id": self.workspace_id,
        }

#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from dust_connectors.es.sink import DocumentSink
from dust_connectors.exceptions import ConnectorNotFoundError
from dust_connectors.logger import DocumentLogger
from dust_connectors.protocol.connectors import ConnectorIndex
from dust_connectors.protocol.google_drive import (
    MirroredObjectIndex,
    SyncTokenIndex,
    WatchedFolderIndex,
    WebhookIndex,
)
from dust_connectors.sources.google_drive.client import GoogleDriveClient
from dust_connectors.sources.google_drive.mime_types import get_mime_types_to_sync
from dust_connectors.utils import Counters, parse_datetime_string, seconds, utc_now


@dataclass
class Generation:
    """One pass of synchronization.

    Folders are marked visited with the generation id, and the garbage
    collector removes what was not seen since `started_at`.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex)  # noqa: A003
    started_at: datetime = field(default_factory=utc_now)

    def to_dict(self):
        return {"id": self.id, "started_at": self.started_at.isoformat()}

    @classmethod
    def from_dict(cls, value):
        return cls(id=value["id"], started_at=parse_datetime_string(value["started_at"]))


class GoogleDriveContext:
    """Dependencies shared by the Google Drive activities.

    Args:
        config (dict): full configuration, see `dust_connectors.config`
        client_factory (callable): builds a `GoogleDriveClient` for a connector
    """

    def __init__(
        self,
        config,
        connectors=None,
        mirror=None,
        folders=None,
        sync_tokens=None,
        webhooks=None,
        sink=None,
        client_factory=None,
    ):
        es_config = config["elasticsearch"]
        indices = config["indices"]
        self.config = config
        self.settings = config["google_drive"]
        self.connectors = connectors or ConnectorIndex(
            es_config, index_name=indices["connectors"]
        )
        self.mirror = mirror or MirroredObjectIndex(
            es_config, index_name=indices["mirrored_objects"]
        )
        self.folders = folders or WatchedFolderIndex(
            es_config, index_name=indices["watched_folders"]
        )
        self.sync_tokens = sync_tokens or SyncTokenIndex(
            es_config, index_name=indices["sync_tokens"]
        )
        self.webhooks = webhooks or WebhookIndex(
            es_config, index_name=indices["webhooks"]
        )
        self.sink = sink or DocumentSink(indices["documents"], es_config)
        self._client_factory = client_factory or self._default_client_factory
        self.counters = Counters()
        self._clients = {}

    @property
    def indices(self):
        return [
            self.connectors,
            self.mirror,
            self.folders,
            self.sync_tokens,
            self.webhooks,
            self.sink,
        ]

    def setting(self, key):
        return self.settings[key]

    def duration(self, key) -> timedelta:
        return seconds(self.settings[key])

    def _default_client_factory(self, connector):
        return GoogleDriveClient(
            json_credentials=connector.credentials,
            subject=connector.subject,
            timeout=self.settings["api_timeout"],
        )

    async def get_connector(self, connector_id):
        connector = await self.connectors.get(connector_id)
        if connector is None:
            msg = f"Connector {connector_id} not found"
            raise ConnectorNotFoundError(msg)
        return connector

    def client_for(self, connector):
        if connector.id not in self._clients:
            self._clients[connector.id] = self._client_factory(connector)
        return self._clients[connector.id]

    def mime_types_for(self, connector):
        return get_mime_types_to_sync(pdf_enabled=connector.pdf_enabled)

    def logger_for(self, connector_id, activity, **extra):
        """Logger tagged with the connector, the activity and a run instance id."""
        run_instance = uuid.uuid4().hex
        prefix = f"[Connector id: {connector_id}][{activity}]"
        for key, value in extra.items():
            prefix = f"{prefix}[{key}: {value}]"
        return DocumentLogger(
            prefix=prefix,
            extra={
                "labels.provider": "google_drive",
                "labels.connector_id": connector_id,
                "labels.activity": activity,
                "labels.run_instance": run_instance,
                **{f"labels.{key}": value for key, value in extra.items()},
            },
        )

    async def ensure_indices(self):
        for index in self.indices:
            await index.ensure_exists()

    async def close(self):
        for index in self.indices:
            await index.close()

#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Workflow checkpoints.

A long running workflow saves its progress after every unit of work so a
restarted worker can pick it up where it stopped instead of starting over.
"""
from enum import Enum

from dust_connectors.es import ESDocument, ESIndex
from dust_connectors.es.index import keyword_mappings
from dust_connectors.utils import iso_utc

WORKFLOWS_INDEX = ".dust-workflows"


class WorkflowStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"


class WorkflowCheckpoint(ESDocument):
    @property
    def workflow_id(self):
        return self.id

    @property
    def workflow_type(self):
        return self.get("workflow_type")

    @property
    def connector_id(self):
        return self.get("connector_id")

    @property
    def status(self):
        return WorkflowStatus(self.get("status"))

    @property
    def state(self):
        return self.get("state", default={})

    def _prefix(self):
        return f"[Workflow id: {self.id}]"

    def _extra(self):
        return {
            "labels.workflow_id": self.id,
            "labels.connector_id": self.connector_id,
        }


class WorkflowIndex(ESIndex):
    MAPPINGS = keyword_mappings(
        "updated_at", state={"type": "object", "enabled": False}
    )

    def __init__(self, elastic_config, index_name=WORKFLOWS_INDEX):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc_source):
        return WorkflowCheckpoint(self, doc_source)

    async def save(self, workflow_id, workflow_type, connector_id, state):
        await self.index(
            {
                "workflow_type": workflow_type,
                "connector_id": connector_id,
                "status": WorkflowStatus.RUNNING.value,
                "state": state,
                "updated_at": iso_utc(),
            },
            doc_id=workflow_id,
        )

    async def load(self, workflow_id):
        return await self.find_by_id(workflow_id)

    async def set_status(self, workflow_id, status):
        await self.upsert_doc(
            workflow_id, {"status": status.value, "updated_at": iso_utc()}
        )

    async def running(self, workflow_type):
        query = {
            "bool": {
                "filter": [
                    {"term": {"workflow_type": workflow_type}},
                    {"term": {"status": WorkflowStatus.RUNNING.value}},
                ]
            }
        }
        async for checkpoint in self.get_all_docs(query=query):
            yield checkpoint

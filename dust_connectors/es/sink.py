#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Downstream document sink.

The sync engine pushes the content of every synced file here, keyed by a
canonical document id, and removes it again when the file goes away. Both
operations are idempotent: pushing the same document twice overwrites it,
deleting a missing document is a no-op.
"""
from dust_connectors.es import TIMESTAMP_FIELD
from dust_connectors.es.index import ESIndex, keyword_mappings
from dust_connectors.utils import iso_utc

OP_INDEX = "index"
OP_DELETE = "delete"
OP_NOOP = "noop"


class DocumentSink(ESIndex):
    MAPPINGS = keyword_mappings(
        "created_at",
        "updated_at",
        TIMESTAMP_FIELD,
        title={"type": "text"},
        body={"type": "text"},
    )

    def __init__(self, index_name, elastic_config):
        super().__init__(index_name=index_name, elastic_config=elastic_config)

    def _create_object(self, doc):
        return {"_id": doc["_id"], **doc.get("_source", {})}

    async def upsert(self, document_id, content, metadata):
        """Replaces the document `document_id` with `content` and `metadata`.

        `content` is either a text or a dict holding an `_attachment` field
        (base64 payload extracted by the ingest pipeline).
        """
        doc = dict(metadata)
        if isinstance(content, dict):
            doc.update(content)
        else:
            doc["body"] = content
        doc[TIMESTAMP_FIELD] = iso_utc()
        await self.index(doc, doc_id=document_id)
        return OP_INDEX

    async def delete(self, document_id):
        deleted = await super().delete(document_id)
        return OP_DELETE if deleted else OP_NOOP

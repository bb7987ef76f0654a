#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
from functools import partial

from elasticsearch import ApiError

from dust_connectors.es.client import ESClient
from dust_connectors.logger import logger

DEFAULT_PAGE_SIZE = 100


def keyword_mappings(*date_fields, **properties):
    """Mappings storing every string as a keyword, `date_fields` as dates."""
    return {
        "dynamic_templates": [
            {
                "strings_as_keywords": {
                    "match_mapping_type": "string",
                    "mapping": {"type": "keyword"},
                }
            }
        ],
        "properties": {
            **{field: {"type": "date"} for field in date_fields},
            **properties,
        },
    }


class DocumentNotFoundError(Exception):
    pass


class ESIndex(ESClient):
    """
    Encapsulates the work with Elasticsearch index.

    All classes that are extended by ESIndex should implement _create_object
    method to represent documents

    Args:
        index_name (str): index_name: Name of an Elasticsearch index
        elastic_config (dict): Elasticsearch configuration and credentials
    """

    MAPPINGS = None

    def __init__(self, index_name, elastic_config):
        super().__init__(elastic_config)
        self.index_name = index_name
        self.elastic_config = elastic_config

    def _create_object(self, doc):
        """
        The method must be implemented in all successor classes

        Args:
            doc (dict): Represents an Elasticsearch document
        Raises:
            NotImplementedError: if not implemented in a successor class
        """
        raise NotImplementedError

    async def ensure_exists(self):
        """Creates the index with `MAPPINGS` if it does not exist yet."""
        if await self._retrier.execute_with_retry(
            partial(self.client.indices.exists, index=self.index_name)
        ):
            return False
        await self._retrier.execute_with_retry(
            partial(
                self.client.indices.create,
                index=self.index_name,
                mappings=self.MAPPINGS,
            )
        )
        logger.debug(f"Created index {self.index_name}")
        return True

    async def _refresh(self):
        if not self.serverless:
            await self._retrier.execute_with_retry(
                partial(
                    self.client.indices.refresh,
                    index=self.index_name,
                    ignore_unavailable=True,
                )
            )

    async def fetch_by_id(self, doc_id):
        resp_body = await self.fetch_response_by_id(doc_id)
        return self._create_object(resp_body)

    async def fetch_response_by_id(self, doc_id):
        try:
            await self._refresh()
            resp = await self._retrier.execute_with_retry(
                partial(self.client.get, index=self.index_name, id=doc_id)
            )
        except ApiError as e:
            if e.status_code == 404:
                msg = f"Couldn't find document in {self.index_name} by id {doc_id}"
                raise DocumentNotFoundError(msg) from e
            logger.error(f"The server returned {e.status_code}")
            logger.error(e.body, exc_info=True)
            raise

        return resp.body

    async def find_by_id(self, doc_id):
        """Same as `fetch_by_id` but returns None for missing documents."""
        try:
            return await self.fetch_by_id(doc_id)
        except DocumentNotFoundError:
            return None

    async def index(self, doc, doc_id=None):
        return await self._retrier.execute_with_retry(
            partial(self.client.index, index=self.index_name, id=doc_id, document=doc)
        )

    async def upsert_doc(self, doc_id, doc):
        """Partial update of `doc_id`, creating the document when missing."""
        return await self._retrier.execute_with_retry(
            partial(
                self.client.update,
                index=self.index_name,
                id=doc_id,
                doc=doc,
                doc_as_upsert=True,
                retry_on_conflict=3,
            )
        )

    async def update(self, doc_id, doc, if_seq_no=None, if_primary_term=None):
        return await self._retrier.execute_with_retry(
            partial(
                self.client.update,
                index=self.index_name,
                id=doc_id,
                doc=doc,
                if_seq_no=if_seq_no,
                if_primary_term=if_primary_term,
            )
        )

    async def delete(self, doc_id):
        """Deletes `doc_id`. Returns False if the document did not exist."""
        try:
            await self._retrier.execute_with_retry(
                partial(self.client.delete, index=self.index_name, id=doc_id)
            )
        except ApiError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def search(self, query, sort=None, size=DEFAULT_PAGE_SIZE):
        """Returns at most `size` documents matching `query`, no pagination."""
        await self._refresh()
        try:
            resp = await self._retrier.execute_with_retry(
                partial(
                    self.client.search,
                    index=self.index_name,
                    query=query,
                    sort=sort,
                    size=size,
                    expand_wildcards="hidden",
                    ignore_unavailable=True,
                    seq_no_primary_term=True,
                )
            )
        except ApiError as e:
            logger.error(
                f"Elasticsearch returned {e.status_code} for 'GET {self.index_name}/_search' with body:"
            )
            logger.error(e.body, exc_info=True)
            raise
        return [self._create_object(hit) for hit in resp["hits"]["hits"]]

    async def get_all_docs(self, query=None, sort=None, page_size=DEFAULT_PAGE_SIZE):
        """
        Lookup for elasticsearch documents using {query}

        Args:
            query (dict): Represents an Elasticsearch query
            sort (list): A list of fields to sort the result
            page_size (int): Number of documents per query
        Returns:
            Iterator
        """
        await self._refresh()

        if query is None:
            query = {"match_all": {}}

        count = 0
        offset = 0

        while True:
            try:
                resp = await self._retrier.execute_with_retry(
                    partial(
                        self.client.search,
                        index=self.index_name,
                        query=query,
                        sort=sort,
                        from_=offset,
                        size=page_size,
                        expand_wildcards="hidden",
                        ignore_unavailable=True,
                        seq_no_primary_term=True,
                    )
                )
            except ApiError as e:
                logger.error(
                    f"Elasticsearch returned {e.status_code} for 'GET {self.index_name}/_search' with body:"
                )
                logger.error(e.body, exc_info=True)
                raise

            hits = resp["hits"]["hits"]
            total = resp["hits"]["total"]["value"]
            count += len(hits)
            for hit in hits:
                yield self._create_object(hit)
            if count >= total or len(hits) == 0:
                break
            offset += len(hits)

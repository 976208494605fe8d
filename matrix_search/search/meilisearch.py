#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright (C) 2025 Element Creations Ltd
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
#

"""Search storage backed by a Meilisearch index, over its REST API."""

import logging
import urllib.parse
from typing import Any

from matrix_search.api.errors import (
    HttpResponseException,
    NetworkError,
    NotFoundError,
    StorageError,
)
from matrix_search.http.client import SimpleHttpClient
from matrix_search.search import IndexedDocument, SearchFilters, SearchHits

logger = logging.getLogger(__name__)

# The document attributes we filter and sort on. Meilisearch refuses to do
# either on attributes which haven't been declared in the index settings.
FILTERABLE_ATTRIBUTES = ["room_id", "sender"]
SORTABLE_ATTRIBUTES = ["origin_server_ts"]


def _quote_filter_value(value: str) -> str:
    return '"%s"' % (value.replace("\\", "\\\\").replace('"', '\\"'),)


def build_filter(filters: SearchFilters) -> str | None:
    """Turn the filters into a Meilisearch filter expression, or None if there
    is nothing to filter on.

    >>> build_filter(SearchFilters(room_id="!a:b", sender="@c:d"))
    'room_id = "!a:b" AND sender = "@c:d"'
    """
    clauses = []
    if filters.room_id is not None:
        clauses.append("room_id = %s" % (_quote_filter_value(filters.room_id),))
    if filters.sender is not None:
        clauses.append("sender = %s" % (_quote_filter_value(filters.sender),))
    if not clauses:
        return None
    return " AND ".join(clauses)


class MeilisearchStorage:
    """Keeps the indexed messages in a Meilisearch index.

    Meilisearch applies writes asynchronously: a successful upsert or delete
    only means the task has been queued. That's fine for us, as nothing reads
    back its own writes.

    Args:
        client: an HTTP client pointing at the Meilisearch server, with the
            master key as its token.
        index: the uid of the index to keep the documents in.
    """

    def __init__(self, client: SimpleHttpClient, index: str):
        self._client = client
        self._index = index
        self._index_path = "/indexes/%s" % (urllib.parse.quote(index, ""),)

    async def setup(self) -> None:
        """Create the index if needed, and declare the attributes we filter and
        sort on.

        Raises:
            StorageError
        """
        logger.info("Setting up search index %s", self._index)
        await self._request(
            "POST", "/indexes", body={"uid": self._index, "primaryKey": "id"}
        )
        await self._request(
            "PATCH",
            self._index_path + "/settings",
            body={
                "filterableAttributes": FILTERABLE_ATTRIBUTES,
                "sortableAttributes": SORTABLE_ATTRIBUTES,
            },
        )

    async def upsert(self, document: IndexedDocument) -> None:
        # POST replaces the whole document if one with the same ID exists.
        await self._request(
            "POST", self._index_path + "/documents", body=[document.to_json()]
        )

    async def delete(self, document_id: str) -> None:
        await self._request(
            "DELETE",
            "%s/documents/%s"
            % (self._index_path, urllib.parse.quote(document_id, "")),
        )

    async def query(
        self,
        term: str,
        filters: SearchFilters = SearchFilters(),
        limit: int = 20,
        offset: int = 0,
    ) -> SearchHits:
        body: dict[str, Any] = {"q": term, "limit": limit, "offset": offset}
        filter_expr = build_filter(filters)
        if filter_expr is not None:
            body["filter"] = filter_expr
        if not term:
            body["sort"] = ["origin_server_ts:desc"]

        response = await self._request("POST", self._index_path + "/search", body=body)
        if not isinstance(response, dict):
            raise StorageError("Unexpected search response from Meilisearch")

        hits = [hit for hit in response.get("hits", []) if isinstance(hit, dict)]
        total = response.get("estimatedTotalHits")
        if not isinstance(total, int):
            total = len(hits)
        return SearchHits(hits=hits, estimated_total_hits=total)

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        try:
            return await self._client.request(method, path, body=body)
        except HttpResponseException as e:
            if e.code == 404:
                raise NotFoundError("%s %s: %s" % (method, path, e)) from e
            raise StorageError(
                "Meilisearch %s %s failed: %s" % (method, path, e)
            ) from e
        except NetworkError as e:
            raise StorageError(
                "Meilisearch %s %s failed: %s" % (method, path, e)
            ) from e

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

import logging
import platform

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)
from prometheus_client.core import REGISTRY

from twisted.internet.interfaces import IListeningPort, IReactorTCP
from twisted.web.resource import Resource
from twisted.web.server import Request, Site

from matrix_search import __version__

logger = logging.getLogger(__name__)


#
# Sync metrics
#

sync_loop_counter = Counter(
    "matrix_search_sync_loop_count",
    "Live sync loop iterations, by outcome",
    labelnames=["outcome"],
)

#
# Ingestion metrics
#

events_received_counter = Counter(
    "matrix_search_events_received",
    "Events handed to the ingestion path",
    labelnames=["source"],
)

documents_upserted_counter = Counter(
    "matrix_search_documents_upserted", "Documents sent to search storage"
)

documents_deleted_counter = Counter(
    "matrix_search_documents_deleted",
    "Documents deleted from search storage because they were edited",
)

decryption_failures_counter = Counter(
    "matrix_search_decryption_failures", "Encrypted events which failed to decrypt"
)

rooms_backfilled_counter = Counter(
    "matrix_search_rooms_backfilled", "Rooms whose history has been fully crawled"
)

# Build info of the running indexer.
build_info = Gauge(
    "matrix_search_build_info", "Build information", ["pythonversion", "version"]
)
build_info.labels(
    " ".join([platform.python_implementation(), platform.python_version()]),
    __version__,
).set(1)


class MetricsResource(Resource):
    """
    Twisted ``Resource`` that serves prometheus metrics.
    """

    isLeaf = True

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

    def render_GET(self, request: Request) -> bytes:
        request.setHeader(b"Content-Type", CONTENT_TYPE_LATEST.encode("ascii"))
        response = generate_latest(self.registry)
        request.setHeader(b"Content-Length", str(len(response)))
        return response


def listen_metrics(
    reactor: IReactorTCP, bind_address: str, port: int
) -> IListeningPort:
    """Start serving the metrics on the given address."""
    logger.info("Metrics listening on %s:%d", bind_address, port)
    return reactor.listenTCP(port, Site(MetricsResource()), interface=bind_address)

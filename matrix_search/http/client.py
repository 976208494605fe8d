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
import urllib.parse
from typing import Any, Mapping, Protocol

import treq
from treq.client import HTTPClient

from twisted.internet import defer
from twisted.internet.interfaces import IReactorTime
from twisted.web.client import Agent, HTTPConnectionPool
from twisted.web.iweb import IResponse

from matrix_search.api.errors import (
    HttpResponseException,
    NetworkError,
    RequestSendFailed,
    RequestTimedOutError,
)
from matrix_search.http import redact_uri
from matrix_search.util import Duration
from matrix_search.util.clock import Clock
from matrix_search.util.json import json_decoder, json_encoder

logger = logging.getLogger(__name__)

# Timeout for ordinary requests, which the server should answer straight away.
SHORT_TIMEOUT = 30 * Duration.SECOND

# Timeout for requests the server may legitimately hold open while it waits for
# data: the /sync long-poll and history pagination.
LONG_TIMEOUT = 2 * Duration.MINUTE

QueryArgs = Mapping[str, str | list[str]]


class _TreqClient(Protocol):
    def request(
        self, method: str, url: str, **kwargs: Any
    ) -> "defer.Deferred[IResponse]": ...


class SimpleHttpClient:
    """Makes authenticated requests to a JSON HTTP API.

    Used both for the homeserver's client-server API and for the search
    storage. Every request is sent with the given bearer token, and every
    response is expected to be JSON. Failures are raised as subclasses of
    `NetworkError`:

    * `HttpResponseException` if the server responded with a non-2xx code,
    * `RequestTimedOutError` if no complete response arrived within the timeout,
    * `RequestSendFailed` if the connection could not be made or was lost.

    Args:
        reactor: the reactor to make connections with and to time requests out.
        clock: used to wait between retries.
        base_url: the base URL of the API, e.g. `https://matrix.example.org`.
        access_token: the bearer token to authenticate with.
        user_agent: the User-Agent header to send.
        http_client: the treq client to send requests with. A new one with its
            own connection pool is made if not given.
    """

    def __init__(
        self,
        reactor: IReactorTime,
        clock: Clock,
        base_url: str,
        access_token: str,
        user_agent: str,
        http_client: _TreqClient | None = None,
    ):
        self.reactor = reactor
        self.clock = clock
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self.user_agent = user_agent

        if http_client is None:
            pool = HTTPConnectionPool(reactor)
            # The long-poll holds a connection open for most of its life, so
            # make sure there is room for everything else alongside it.
            pool.maxPersistentPerHost = 5
            pool.cachedConnectionTimeout = 2 * 60
            http_client = HTTPClient(Agent(reactor, pool=pool))

        self._client = http_client

    async def request(
        self,
        method: str,
        path: str,
        query: QueryArgs | None = None,
        body: Any | None = None,
        timeout: float = SHORT_TIMEOUT,
    ) -> Any:
        """Send a request and decode the JSON response.

        Args:
            method: HTTP method to use.
            path: the path of the endpoint, including the API prefix. Path
                parameters must already be escaped.
            query: query string arguments.
            body: a JSON-serialisable request body, or None to send no body.
            timeout: how long to wait for the complete response, in seconds.

        Returns:
            The decoded JSON body of the response.

        Raises:
            NetworkError (or a subclass) if the request fails.
        """
        url = self._base_url + path
        log_uri = url
        if query:
            log_uri += "?" + urllib.parse.urlencode(query, doseq=True)
        log_uri = redact_uri(log_uri)

        headers = {
            b"Authorization": [b"Bearer " + self._access_token.encode("ascii")],
            b"User-Agent": [self.user_agent.encode("ascii")],
        }
        data = None
        if body is not None:
            headers[b"Content-Type"] = [b"application/json"]
            data = json_encoder.encode(body).encode("utf-8")

        async def _send() -> tuple[IResponse, bytes]:
            response = await self._client.request(
                method, url, params=query, data=data, headers=headers
            )
            response_body = await treq.content(response)
            return response, response_body

        logger.debug("Sending request %s %s", method, log_uri)

        d = defer.ensureDeferred(_send())
        d.addTimeout(timeout, self.reactor)
        try:
            response, response_body = await d
        except defer.TimeoutError as e:
            logger.info("Request %s %s timed out after %ss", method, log_uri, timeout)
            raise RequestTimedOutError(
                "Timed out after %ss waiting for %s" % (timeout, log_uri)
            ) from e
        except Exception as e:
            logger.info("Failed to send request %s %s: %s", method, log_uri, e)
            raise RequestSendFailed(e) from e

        logger.debug(
            "Received response to %s %s: %d", method, log_uri, response.code
        )

        if not 200 <= response.code < 300:
            raise HttpResponseException(
                response.code,
                response.phrase.decode("ascii", errors="replace"),
                response_body,
            )

        try:
            return json_decoder.decode(response_body.decode("utf-8"))
        except ValueError as e:
            # The server answered, but with garbage. Treat it like any other
            # bad response.
            raise HttpResponseException(
                response.code, "Response was not valid JSON: %s" % (e,), response_body
            ) from e

    async def request_with_retries(
        self,
        method: str,
        path: str,
        query: QueryArgs | None = None,
        body: Any | None = None,
        timeout: float = SHORT_TIMEOUT,
        max_attempts: int = 15,
        retry_delay: float = 1.0,
    ) -> Any:
        """Like `request`, but retries on transient failure.

        Timeouts, connection failures and 5xx/429 responses are retried, up to
        `max_attempts` attempts in total, waiting `retry_delay` seconds after
        each failed attempt. Other errors are raised straight away.

        Only use this for requests which are safe to repeat.

        Raises:
            NetworkError: the last error, once the attempts are exhausted.
        """
        last_exception: NetworkError | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.request(method, path, query, body, timeout)
            except HttpResponseException as e:
                if not e.is_retryable():
                    raise
                last_exception = e
            except NetworkError as e:
                last_exception = e

            logger.warning(
                "Request %s %s failed (attempt %d of %d): %s",
                method,
                redact_uri(path),
                attempt,
                max_attempts,
                last_exception,
            )
            await self.clock.sleep(retry_delay)

        assert last_exception is not None
        raise last_exception

    async def get_json(
        self, path: str, args: QueryArgs | None = None, timeout: float = SHORT_TIMEOUT
    ) -> Any:
        return await self.request("GET", path, query=args, timeout=timeout)

    async def post_json_get_json(
        self, path: str, post_json: Any, timeout: float = SHORT_TIMEOUT
    ) -> Any:
        return await self.request("POST", path, body=post_json, timeout=timeout)

    async def put_json(
        self,
        path: str,
        json_body: Any,
        query: QueryArgs | None = None,
        timeout: float = SHORT_TIMEOUT,
    ) -> Any:
        return await self.request(
            "PUT", path, query=query, body=json_body, timeout=timeout
        )

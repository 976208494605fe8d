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

"""Contains exceptions and error codes."""

import logging
from http import HTTPStatus

from matrix_search.util.json import json_decoder

logger = logging.getLogger(__name__)


class Codes:
    """Matrix error codes we care about when talking to the homeserver."""

    NOT_FOUND = "M_NOT_FOUND"
    UNKNOWN = "M_UNKNOWN"


class MatrixSearchError(Exception):
    """Base class for all the exceptions raised by the indexer."""


class NetworkError(MatrixSearchError):
    """A request to a remote server failed in a way which may succeed if it is
    retried.
    """


class RequestTimedOutError(NetworkError):
    """Exception representing timeout of an outbound request"""

    def __init__(self, msg: str):
        super().__init__(msg)
        self.msg = msg


class RequestSendFailed(NetworkError):
    """Sending a HTTP request over the wire failed, before a response was
    received.

    Args:
        inner_exception: the exception raised by twisted
    """

    def __init__(self, inner_exception: BaseException):
        super().__init__(
            "Failed to send request: %s: %s"
            % (type(inner_exception).__name__, inner_exception)
        )
        self.inner_exception = inner_exception


class HttpResponseException(NetworkError):
    """
    Represents an HTTP-level failure of an outbound request

    Attributes:
        code: HTTP error code
        msg: string describing the error
        response: body of response
    """

    def __init__(self, code: int, msg: str, response: bytes):
        super().__init__("%d: %s" % (code, msg))
        self.code = int(code)
        self.msg = msg
        self.response = response

    def is_retryable(self) -> bool:
        """Whether retrying the request that caused this error may help.

        Server errors and rate limiting are transient; anything else (bad
        requests, unknown rooms, invalid tokens...) will fail again.
        """
        return self.code >= 500 or self.code == HTTPStatus.TOO_MANY_REQUESTS

    def to_matrix_error(self) -> "MatrixError":
        """Make a MatrixError from the response body.

        The body is expected to be a standard Matrix error (`errcode` and
        `error`). If it isn't, the returned error has `M_UNKNOWN` as its code
        and the HTTP reason phrase as its message.
        """
        errcode = Codes.UNKNOWN
        errmsg = self.msg
        try:
            j = json_decoder.decode(self.response.decode("utf-8"))
        except ValueError:
            j = {}

        if isinstance(j, dict):
            errcode = j.get("errcode", errcode)
            errmsg = j.get("error", errmsg)

        return MatrixError(self.code, errmsg, errcode)


class MatrixError(MatrixSearchError):
    """An error returned by the homeserver, as a Matrix errcode."""

    def __init__(self, code: int, msg: str, errcode: str = Codes.UNKNOWN):
        super().__init__("%d: %s (%s)" % (code, msg, errcode))
        self.code = code
        self.msg = msg
        self.errcode = errcode


class DecryptionError(MatrixSearchError):
    """An encrypted event could not be decrypted, e.g. because we don't have
    the megolm session it was encrypted with.
    """


class InvalidOutgoingRequestError(MatrixSearchError):
    """The crypto engine asked us to send a request which we can't send, either
    because it is of an unknown type or because it lacks a field its type needs.
    """


class UnknownRequestTypeError(InvalidOutgoingRequestError):
    """The crypto engine asked us to send a request we don't know how to send."""

    def __init__(self, request_type: str):
        super().__init__("Unknown outgoing request type %r" % (request_type,))
        self.request_type = request_type


class PersistenceError(MatrixSearchError):
    """A checkpoint could not be written to disk.

    The in-memory state has diverged from the state on disk, so the process
    must stop rather than carry on.
    """

    def __init__(self, path: str, inner_exception: BaseException):
        super().__init__(
            "Failed to persist %s: %s: %s"
            % (path, type(inner_exception).__name__, inner_exception)
        )
        self.path = path
        self.inner_exception = inner_exception


class StorageError(MatrixSearchError):
    """The search storage failed to carry out an operation."""


class NotFoundError(StorageError):
    """The document the search storage was asked about doesn't exist."""

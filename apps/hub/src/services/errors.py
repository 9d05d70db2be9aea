from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import ClassVar

import httpx
from pydantic import ValidationError


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    DECODE_FAILURE = "decode_failure"
    NO_DATA = "no_data"
    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    STREAM_DISCONNECTED = "stream_disconnected"
    CANCELLED = "cancelled"


# HTTP_STATUS is decided per status code in is_retryable().
RETRYABLE_KINDS: dict[ErrorKind, bool] = {
    ErrorKind.INVALID_REQUEST: False,
    ErrorKind.NETWORK: True,
    ErrorKind.HTTP_STATUS: False,
    ErrorKind.DECODE_FAILURE: False,
    ErrorKind.NO_DATA: False,
    ErrorKind.TIMEOUT: True,
    ErrorKind.PROVIDER_UNAVAILABLE: True,
    ErrorKind.STREAM_DISCONNECTED: True,
    ErrorKind.CANCELLED: False,
}


class WindDataError(RuntimeError):
    """Base class for every failure surfaced by the wind data layer."""

    kind: ClassVar[ErrorKind]

    @property
    def retryable(self) -> bool:
        return is_retryable(self)


class InvalidRequestError(WindDataError):
    kind = ErrorKind.INVALID_REQUEST


class NetworkError(WindDataError):
    kind = ErrorKind.NETWORK

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Network error: {cause}")
        self.cause = cause


class HttpStatusError(WindDataError):
    kind = ErrorKind.HTTP_STATUS

    def __init__(self, status_code: int, body: str | None = None) -> None:
        super().__init__(f"Server returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class DecodeFailureError(WindDataError):
    kind = ErrorKind.DECODE_FAILURE


class NoDataError(WindDataError):
    kind = ErrorKind.NO_DATA


class RequestTimeoutError(WindDataError):
    kind = ErrorKind.TIMEOUT


class ProviderUnavailableError(WindDataError):
    kind = ErrorKind.PROVIDER_UNAVAILABLE


class StreamDisconnectedError(WindDataError):
    kind = ErrorKind.STREAM_DISCONNECTED


def is_retryable(error: BaseException) -> bool:
    """Single source of truth for retry decisions across the package."""
    kind = classify(error)
    if kind is ErrorKind.HTTP_STATUS:
        status_code = getattr(error, "status_code", 0)
        return status_code >= 500 or status_code == 429
    return RETRYABLE_KINDS[kind]


def classify(error: BaseException) -> ErrorKind:
    if isinstance(error, WindDataError):
        return error.kind
    if isinstance(error, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(error, httpx.InvalidURL):
        return ErrorKind.INVALID_REQUEST
    if isinstance(error, httpx.TransportError):
        return ErrorKind.NETWORK
    if isinstance(error, (ValidationError, json.JSONDecodeError, UnicodeDecodeError)):
        return ErrorKind.DECODE_FAILURE
    return ErrorKind.NETWORK


def wrap_transport_error(error: httpx.HTTPError) -> WindDataError:
    """Translate an httpx failure into the matching taxonomy error.

    Malformed URLs raise ``httpx.InvalidURL``, which is not an ``HTTPError``;
    only ``classify`` sees those.
    """
    kind = classify(error)
    if kind is ErrorKind.TIMEOUT:
        return RequestTimeoutError(f"Request timed out: {error}")
    return NetworkError(error)


__all__ = [
    "DecodeFailureError",
    "ErrorKind",
    "HttpStatusError",
    "InvalidRequestError",
    "NetworkError",
    "NoDataError",
    "ProviderUnavailableError",
    "RETRYABLE_KINDS",
    "RequestTimeoutError",
    "StreamDisconnectedError",
    "WindDataError",
    "classify",
    "is_retryable",
    "wrap_transport_error",
]

"""Failure taxonomy shared by the gateway and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class GatewayError(Exception):
    """Base class for classified request failures."""


class NetworkError(GatewayError):
    """The request never produced an HTTP response (connectivity, timeout)."""


class HTTPError(GatewayError):
    def __init__(self, status: int, server_message: Optional[str] = None):
        self.status = status
        self.server_message = server_message
        detail = f": {server_message}" if server_message else ""
        super().__init__(f"HTTP {status}{detail}")


class DecodeError(GatewayError):
    """The response body did not match the expected shape."""


class NotAuthenticatedError(Exception):
    """An operation that needs a signed-in user was called without one."""


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: Any) -> "GatewayResult[Any]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: GatewayError) -> "GatewayResult[Any]":
        return cls(error=error)


def user_message(error: Optional[GatewayError], fallback: str) -> str:
    """Return the server's human-readable error text, or ``fallback``."""

    if isinstance(error, HTTPError) and error.server_message:
        return error.server_message
    if isinstance(error, NetworkError):
        return f"Network error: {error}"
    return fallback

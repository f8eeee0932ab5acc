"""Base Sofascore URL/error helpers."""

from __future__ import annotations

import enum
from typing import Any, Dict, Optional

from ..errors import OddsgridError

SOFASCORE_SITE_URL = "https://www.sofascore.com/"
SOFASCORE_ORIGIN = "https://www.sofascore.com"
SOFASCORE_API_BASE = "https://api.sofascore.com/api/v1"

SUPPORTED_SPORTS = ("football", "basketball")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    PARSE = "parse"


class ClientError(OddsgridError):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        url: str = "",
        status: Optional[int] = None,
        retries: int = 0,
        pool_stats: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.status = status
        self.retries = retries
        self.pool_stats = pool_stats

    def __str__(self) -> str:
        base = super().__str__()
        return f"[{self.kind.value}] {base}"


class TransportError(OddsgridError):
    """Raised by a transport when no HTTP status could be obtained."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


def kind_for_status(status: int) -> Optional[ErrorKind]:
    if 200 <= status < 300:
        return None
    if status == 403:
        return ErrorKind.FORBIDDEN
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (502, 503, 504):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.NETWORK

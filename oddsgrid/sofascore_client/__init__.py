"""Rate-governed Sofascore API client split into focused modules."""

from .base import ClientError, ErrorKind  # noqa: F401
from .session import RequestClient  # noqa: F401

"""
Pipedrive CRM integration: API client, rate limiting, record models, tools
and prompts.

Importing this package registers every tool and prompt on ``catalog``.
"""

from .provider import (
    CrmAPIError,
    CrmConnectionError,
    CrmError,
    CrmResponseError,
    PipedriveClient,
    RecordProvider,
)
from .rate_limit import RateLimitedProvider, RateLimiter, RateLimiterConfig
from .tools import ToolContext, catalog
from . import prompts  # noqa: F401  registers the prompts

__all__ = [
    "CrmAPIError",
    "CrmConnectionError",
    "CrmError",
    "CrmResponseError",
    "PipedriveClient",
    "RecordProvider",
    "RateLimitedProvider",
    "RateLimiter",
    "RateLimiterConfig",
    "ToolContext",
    "catalog",
]

"""
Outbound rate limiting for Pipedrive calls.

``RateLimiter`` admits calls under two constraints: at most
``max_concurrent`` calls in flight, and at least ``min_interval`` seconds
between two consecutive dispatches. ``RateLimitedProvider`` wraps a
``RecordProvider`` so every upstream call goes through one shared limiter.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pipedrive_mcp.config import Settings
from pipedrive_mcp.crm.provider import RecordProvider

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimiterConfig:
    """Configuration for the call gate.

    Attributes:
        min_interval: Minimum seconds between two dispatches
        max_concurrent: Maximum calls in flight
    """

    min_interval: float = 0.25
    max_concurrent: int = 2

    def __post_init__(self) -> None:
        if self.min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiterConfig":
        return cls(
            min_interval=settings.rate_limit_min_time_ms / 1000.0,
            max_concurrent=settings.rate_limit_max_concurrent,
        )


class RateLimiter:
    """Concurrency ceiling plus minimum spacing between dispatches.

    Waiting callers are released in arrival order. The limiter only decides
    when a call starts; results and exceptions pass through untouched.

    Example:
        >>> limiter = RateLimiter(RateLimiterConfig(min_interval=0.25, max_concurrent=2))
        >>> deals = await limiter.schedule(client.get_deals)
    """

    def __init__(self, config: Optional[RateLimiterConfig] = None) -> None:
        self._config = config or RateLimiterConfig()
        self._slots = asyncio.Semaphore(self._config.max_concurrent)
        self._dispatch_lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None
        self._in_flight = 0

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def _wait_for_spacing(self) -> None:
        async with self._dispatch_lock:
            if self._last_dispatch is not None:
                while True:
                    remaining = self._last_dispatch + self._config.min_interval - time.monotonic()
                    if remaining <= 0:
                        break
                    await asyncio.sleep(remaining)
            self._last_dispatch = time.monotonic()

    async def schedule(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``func(*args, **kwargs)`` once both constraints allow it."""
        async with self._slots:
            await self._wait_for_spacing()
            self._in_flight += 1
            try:
                return await func(*args, **kwargs)
            finally:
                self._in_flight -= 1


class RateLimitedProvider(RecordProvider):
    """``RecordProvider`` that routes every operation through a ``RateLimiter``."""

    def __init__(self, provider: RecordProvider, limiter: RateLimiter) -> None:
        self._provider = provider
        self.limiter = limiter

    @property
    def base_url(self) -> str:  # type: ignore[override]
        return self._provider.base_url

    @property
    def wrapped(self) -> RecordProvider:
        return self._provider

    async def get_users(self) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_users)

    async def get_deals(
        self,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        stage_id: Optional[int] = None,
        pipeline_id: Optional[int] = None,
        limit: Optional[int] = None,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(
            self._provider.get_deals,
            status=status,
            user_id=user_id,
            stage_id=stage_id,
            pipeline_id=pipeline_id,
            limit=limit,
            sort=sort,
        )

    async def get_deal(self, deal_id: int) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.get_deal, deal_id)

    async def search_deals(self, term: str) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.search_deals, term)

    async def get_notes(self, deal_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_notes, deal_id, limit=limit)

    async def get_persons(self) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_persons)

    async def get_person(self, person_id: int) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.get_person, person_id)

    async def search_persons(self, term: str) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.search_persons, term)

    async def get_organizations(self) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_organizations)

    async def get_organization(self, organization_id: int) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.get_organization, organization_id)

    async def search_organizations(self, term: str) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.search_organizations, term)

    async def get_pipelines(self) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_pipelines)

    async def get_pipeline(self, pipeline_id: int) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.get_pipeline, pipeline_id)

    async def get_pipeline_stages(self, pipeline_id: int) -> List[Dict[str, Any]]:
        return await self.limiter.schedule(self._provider.get_pipeline_stages, pipeline_id)

    async def search_leads(self, term: str) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.search_leads, term)

    async def search_items(self, term: str, item_types: Optional[str] = None) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.search_items, term, item_types=item_types)

    async def create_deal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.create_deal, payload)

    async def create_person(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.create_person, payload)

    async def create_organization(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.limiter.schedule(self._provider.create_organization, payload)

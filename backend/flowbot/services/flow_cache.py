# /flowbot/services/flow_cache.py

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import structlog

from flowbot.models.flow import ChatbotFlow
from flowbot.utils.metrics import flow_cache_operations
from flowbot.workflows.validator import load_flows

# Per-tenant, TTL-bounded cache of active flow definitions. Flows change far
# less often than messages arrive, so one fetch serves every message of a
# tenant until the entry expires.

log = structlog.get_logger(__name__)

FetchFlows = Callable[[str], Union[Awaitable[Sequence[Any]], Sequence[Any]]]


class FlowFetchError(RuntimeError):
    """The flow-definition collaborator failed. Propagated to the caller, never retried."""

    def __init__(self, tenant_id: str, cause: BaseException):
        super().__init__(f"Fetching flows for tenant {tenant_id} failed: {cause}")
        self.tenant_id = tenant_id


@dataclass
class _CacheEntry:
    flows: List[ChatbotFlow]
    cached_at: float


class FlowCache:
    def __init__(
        self,
        fetch_flows: FetchFlows,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_flows = fetch_flows
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id, asyncio.Lock())

    async def get_active_flows(self, tenant_id: str) -> List[ChatbotFlow]:
        """Active flows for a tenant; fetches only on a miss or after the TTL."""
        async with self._lock_for(tenant_id):
            entry = self._entries.get(tenant_id)
            if entry and self._clock() - entry.cached_at < self.ttl_seconds:
                flow_cache_operations.labels(status="hit").inc()
                return entry.flows

            flow_cache_operations.labels(status="miss").inc()
            try:
                fetched = self._fetch_flows(tenant_id)
                if inspect.isawaitable(fetched):
                    fetched = await fetched
            except Exception as e:
                flow_cache_operations.labels(status="error").inc()
                log.error("flow_fetch_failed", tenant_id=tenant_id, error=str(e))
                raise FlowFetchError(tenant_id, e) from e

            flows = [flow for flow in load_flows(fetched or []) if flow.is_active]
            self._entries[tenant_id] = _CacheEntry(flows=flows, cached_at=self._clock())
            log.debug("flow_cache_refreshed", tenant_id=tenant_id, active_flows=len(flows))
            return flows

    def clear(self, tenant_id: Optional[str] = None) -> None:
        """Evict one tenant, or every tenant when no id is given."""
        if tenant_id:
            self._entries.pop(tenant_id, None)
        else:
            self._entries.clear()

    def set_ttl(self, ttl_seconds: float) -> None:
        self.ttl_seconds = ttl_seconds

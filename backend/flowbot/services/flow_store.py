# /flowbot/services/flow_store.py

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

from flowbot.models.flow import ChatbotFlow
from flowbot.workflows.validator import load_flows

# In-process registry of tenant flows. Backs the `fetch_flows` collaborator
# for the standalone deployment; integrated deployments inject their own
# fetch function instead.

logger = logging.getLogger(__name__)


class FlowStore:
    def __init__(self):
        self._flows: Dict[str, List[ChatbotFlow]] = {}
        logger.info("FlowStore initialized.")

    async def fetch_flows(self, tenant_id: str) -> List[ChatbotFlow]:
        """All flows for a tenant, active and inactive."""
        return list(self._flows.get(tenant_id, []))

    def replace_flows(self, tenant_id: str, raw_flows: Sequence[Any]) -> List[ChatbotFlow]:
        """Replace a tenant's flows; returns the ones that passed validation."""
        flows = load_flows(raw_flows)
        self._flows[tenant_id] = flows
        logger.info(f"Stored {len(flows)} of {len(raw_flows)} flows for tenant {tenant_id}.")
        return flows

    def load_file(self, path: str) -> int:
        """Load a JSON file shaped {tenantId: [flow, ...]}; returns the number of flows stored."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Flows file {path} must contain an object keyed by tenant id")
        total = 0
        for tenant_id, raw_flows in data.items():
            total += len(self.replace_flows(tenant_id, raw_flows or []))
        return total

    def clear(self) -> None:
        self._flows.clear()


# Globally accessible instance
flow_store = FlowStore()

"""In-memory index of compiled endpoints used to resolve dependencies."""

import asyncio
from typing import Dict, List, Optional, Tuple

from apirunner.core.models import Scenario
from apirunner.logger import get_logger

logger = get_logger(__name__)

CacheKey = Tuple[Optional[str], Optional[str], str]


class ScenarioCache:
    """
    Endpoints of compiled scenarios keyed by collection, scenario and name.

    An endpoint is reachable through its scenario name and its scenario file
    name. ``find`` returns a single-endpoint copy of the scenario so callers
    can execute it without affecting other branches.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, Scenario] = {}
        self._lock = asyncio.Lock()

    async def add(self, scenarios: List[Scenario]) -> None:
        async with self._lock:
            for scenario in scenarios:
                for endpoint in scenario.endpoints:
                    entry = scenario.model_copy(update={"endpoints": [endpoint]}, deep=True)
                    for scenario_key in {scenario.name, scenario.file_stem}:
                        if scenario_key:
                            self._entries[(scenario.collection, scenario_key, endpoint.name)] = entry
        logger.debug(f"Scenario cache holds {len(self._entries)} endpoint entries")

    async def find(self, collection: Optional[str], scenario: Optional[str], name: str) -> Optional[Scenario]:
        async with self._lock:
            entry = self._entries.get((collection, scenario, name))
        return entry.model_copy(deep=True) if entry else None

    def __len__(self) -> int:
        return len(self._entries)

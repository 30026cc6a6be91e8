"""
Scenario compilation.

Turns raw scenario documents into ``Scenario`` models, applies collection,
scenario and endpoint filters and resolves payload file references. Compiling
from a frozen snapshot applies exactly the same selection as compiling from
the live sources.
"""

from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from apirunner.compiler.filters import MatchMode
from apirunner.compiler.freeze import ScenarioFreezer
from apirunner.compiler.sources import PayloadLoader, ScenarioSource
from apirunner.constants import PAYLOAD_REFERENCE_PREFIX
from apirunner.core.models import Endpoint, Scenario
from apirunner.exceptions import CompilationError
from apirunner.logger import get_logger
from apirunner.utils.helpers import endpoint_id

logger = get_logger(__name__)


class Compiler:
    """Loads and filters scenarios."""

    def __init__(
        self,
        source: ScenarioSource,
        payload_loader: Optional[PayloadLoader] = None,
        freezer: Optional[ScenarioFreezer] = None
    ):
        """
        Args:
            source: Provider of raw scenario documents
            payload_loader: Resolver of ``!path`` payload references
            freezer: Snapshot used instead of ``source`` when present
        """
        self.source = source
        self.payload_loader = payload_loader
        self.freezer = freezer

    async def compile(
        self,
        collections: Any = None,
        scenarios: Any = None,
        apis: Any = None,
        mode: MatchMode = MatchMode.EXACT,
        use_frozen: bool = True
    ) -> List[Scenario]:
        """
        Compile the selected scenarios.

        Each filter is a comma separated list (or a list) of names; None or
        ``all`` selects everything. Scenarios match by name or file name.
        Scenarios left without endpoints are dropped.

        Args:
            collections: Collection filter
            scenarios: Scenario filter
            apis: Endpoint filter
            mode: Exact names or case-insensitive regex search
            use_frozen: Use the frozen snapshot when one exists

        Returns:
            List[Scenario]: The selected scenarios
        """
        if use_frozen and self.freezer and self.freezer.is_frozen():
            try:
                frozen = await self.freezer.load()
                logger.debug(f"Compiling from frozen scenarios {self.freezer.path}")
                return self._select(frozen, collections, scenarios, apis, mode)
            except CompilationError as e:
                logger.warning(f"{e}. Compiling from the scenario sources instead")

        documents = await self.source.read_all(collections, mode)
        parsed = []
        for document in documents:
            try:
                parsed.append(self.parse(document))
            except CompilationError as e:
                logger.error(str(e))

        selected = self._select(parsed, collections, scenarios, apis, mode)
        for scenario in selected:
            await self._load_payloads(scenario)
        return selected

    async def search(self, collections: Any = None, scenarios: Any = None, apis: Any = None, use_frozen: bool = True) -> List[Scenario]:
        """``compile`` in regex search mode."""
        return await self.compile(collections, scenarios, apis, MatchMode.SEARCH, use_frozen)

    def parse(self, document: Dict[str, Any]) -> Scenario:
        """
        Build a ``Scenario`` from a raw document.

        Raises:
            CompilationError: If the document is not a valid scenario
        """
        document = dict(document)
        document.setdefault("name", document.get("scenarioFile"))
        document["endpoints"] = [
            endpoint
            for endpoint in document.get("endpoints") or []
            if isinstance(endpoint, dict) and endpoint.get("name")
        ]
        try:
            scenario = Scenario.model_validate(document)
        except ValidationError as e:
            raise CompilationError(f"Invalid scenario in file {document.get('file')}: {e}") from e

        if scenario.file_stem and scenario.name != scenario.file_stem:
            logger.warning(
                f"Scenario name [{scenario.name}] and filename [{scenario.file_stem}] "
                f"in file {scenario.file} are different"
            )

        for endpoint in scenario.endpoints:
            endpoint.collection = scenario.collection
            endpoint.scenario = scenario.name
            endpoint.scenario_file = scenario.file
            endpoint.dependency_level = 0
        return scenario

    @staticmethod
    def _select(
        candidates: List[Scenario],
        collections: Any,
        scenarios: Any,
        apis: Any,
        mode: MatchMode
    ) -> List[Scenario]:
        selected = []
        for scenario in candidates:
            if not mode.matches(collections, scenario.collection):
                continue
            if not mode.matches(scenarios, scenario.name, scenario.file_stem):
                continue
            endpoints = [endpoint for endpoint in scenario.endpoints if mode.matches(apis, endpoint.name)]
            if endpoints:
                selected.append(scenario.model_copy(update={"endpoints": endpoints}, deep=True))
        return selected

    async def _load_payloads(self, scenario: Scenario) -> None:
        for endpoint in scenario.endpoints:
            reference = endpoint.payload
            if not isinstance(reference, str) or not reference.startswith(PAYLOAD_REFERENCE_PREFIX):
                continue
            endpoint.payload_key = reference
            try:
                if self.payload_loader is None:
                    raise CompilationError("No payload loader configured")
                endpoint.payload = await self.payload_loader.load(reference)
            except CompilationError as e:
                logger.error(f"Error loading payload for {scenario.name}.{endpoint.name} [{reference}]: {e}")
                endpoint.payload = {}


def to_endpoint_list(scenarios: List[Scenario]) -> List[Endpoint]:
    """Flatten scenarios into their endpoints."""
    return [endpoint for scenario in scenarios for endpoint in scenario.endpoints]


def to_tree(endpoints: List[Endpoint]) -> Dict[str, Dict[str, Dict[str, Dict]]]:
    """Group endpoints as collection -> ``scenario [file]`` -> endpoint name."""
    tree: Dict[str, Dict[str, Dict[str, Dict]]] = {}
    for endpoint in endpoints:
        scenario_label = f"{endpoint.scenario} [{endpoint.scenario_file}]"
        tree.setdefault(endpoint.collection or "", {}).setdefault(scenario_label, {})[endpoint.name] = {}
    return tree


def dependency_hierarchy(endpoints: List[Endpoint]) -> Dict[str, Dict]:
    """
    Nested view of the dependencies of every endpoint.

    Keys are ``"<n>. collection.scenario.endpoint"``. Dependencies outside
    ``endpoints`` are shown without children and cycles are cut.
    """
    index = {endpoint.id: endpoint for endpoint in endpoints}

    def children(endpoint: Endpoint, visited: Set[str]) -> Dict[str, Dict]:
        nodes = {}
        for position, dependency in enumerate(endpoint.dependencies, start=1):
            target = endpoint_id(
                dependency.collection or endpoint.collection,
                dependency.scenario or endpoint.scenario,
                dependency.api
            )
            dependent = index.get(target)
            if dependent is None or target in visited:
                nodes[f"{position}. {target}"] = {}
            else:
                nodes[f"{position}. {target}"] = children(dependent, visited | {target})
        return nodes

    return {
        f"{position}. {endpoint.id}": children(endpoint, {endpoint.id})
        for position, endpoint in enumerate(endpoints, start=1)
    }

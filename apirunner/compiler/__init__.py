"""Scenario loading, filtering and freezing."""

from .compiler import Compiler, dependency_hierarchy, to_endpoint_list, to_tree
from .filters import FilterScope, KeyOperator, MatchMode, filter_by_key
from .freeze import ScenarioFreezer
from .sources import (
    DirectoryPayloadLoader,
    DirectoryScenarioSource,
    DirectorySchemaLoader,
    InMemoryScenarioSource,
    PayloadLoader,
    ScenarioSource,
    SchemaLoader,
)

__all__ = [
    "Compiler",
    "dependency_hierarchy",
    "to_endpoint_list",
    "to_tree",
    "FilterScope",
    "KeyOperator",
    "MatchMode",
    "filter_by_key",
    "ScenarioFreezer",
    "DirectoryPayloadLoader",
    "DirectoryScenarioSource",
    "DirectorySchemaLoader",
    "InMemoryScenarioSource",
    "PayloadLoader",
    "ScenarioSource",
    "SchemaLoader",
]

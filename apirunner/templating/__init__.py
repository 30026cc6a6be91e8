"""Placeholder templating, extraction paths and value generators."""

from .engine import ResolvedRequest, TemplateEngine, default_engine, resolve
from .generators import TIME_FUNCTIONS, DataSets, LoremGenerator, default_datasets, lorem, time_generators
from .paths import NOT_FOUND, extract, extract_or_none, split_path
from .scope import Generator, Literal, Scope, Variable, as_variable

__all__ = [
    "ResolvedRequest",
    "TemplateEngine",
    "default_engine",
    "resolve",
    "TIME_FUNCTIONS",
    "DataSets",
    "LoremGenerator",
    "default_datasets",
    "lorem",
    "time_generators",
    "NOT_FOUND",
    "extract",
    "extract_or_none",
    "split_path",
    "Generator",
    "Literal",
    "Scope",
    "Variable",
    "as_variable",
]

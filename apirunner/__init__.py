"""
APIRunner - Declarative API test scenario execution engine.

Scenarios are JSON documents describing HTTP endpoints, the dependencies
between them, templated requests and response assertions. This package
compiles, resolves and executes those scenarios with bounded concurrency.
"""

from apirunner._version import __version__, __version_info__
from apirunner.config import settings
from apirunner.logger import logger

__all__ = [
    "settings",
    "logger",
    "__version__",
    "__version_info__",
]

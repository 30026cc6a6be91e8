"""Target systems endpoints are executed against."""

from typing import Any, Dict, Optional, Tuple

from apirunner.config import Settings, SystemConfig
from apirunner.exceptions import ConfigurationError
from apirunner.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SYSTEM_ALIAS = "default"


class SystemRegistry:
    """
    Named system configurations plus the per-job system selection.

    A job may remap system names used by endpoints onto configured systems
    (``alias=system``); the alias ``default`` replaces the default system.
    """

    def __init__(self, systems: Optional[Dict[str, SystemConfig]] = None, default: Optional[str] = None):
        self.systems: Dict[str, SystemConfig] = dict(systems or {})
        self.aliases: Dict[str, str] = {}
        if default is None and self.systems:
            default = DEFAULT_SYSTEM_ALIAS if DEFAULT_SYSTEM_ALIAS in self.systems else next(iter(self.systems))
        self.default = default

    @classmethod
    def from_settings(cls, settings: Settings) -> "SystemRegistry":
        return cls(settings.systems, settings.default_system)

    def select(self, aliases: Dict[str, str]) -> None:
        """
        Apply a job's system selection.

        Args:
            aliases: Mapping of system names used by endpoints to configured systems

        Raises:
            ConfigurationError: If a selected system is not configured
        """
        for alias, name in aliases.items():
            if name not in self.systems:
                raise ConfigurationError(
                    f"System '{name}' is not configured. Available systems: {', '.join(self.systems) or 'none'}"
                )
            if alias == DEFAULT_SYSTEM_ALIAS:
                self.default = name
            else:
                self.aliases[alias] = name
            logger.info(f"Using system {name} for {alias}")

    def resolve_name(self, name: Optional[str]) -> Optional[str]:
        """Configured system name for the name used by an endpoint."""
        if name:
            name = self.aliases.get(name, name)
            if name in self.systems:
                return name
            logger.error(f"System {name} not found, using the default system")
        return self.default

    def get(self, name: Optional[str]) -> Tuple[Optional[str], Optional[SystemConfig]]:
        resolved = self.resolve_name(name)
        return resolved, self.systems.get(resolved) if resolved else None

    def variables(self, name: Optional[str]) -> Dict[str, Any]:
        """Variables configured on the system, merged into endpoint scopes."""
        _, system = self.get(name)
        return dict(system.variables) if system else {}

"""Frozen snapshot of compiled scenarios."""

import json
from pathlib import Path
from typing import List

import aiofiles

from apirunner.core.models import Scenario
from apirunner.exceptions import CompilationError
from apirunner.logger import get_logger

logger = get_logger(__name__)


class ScenarioFreezer:
    """
    Serializes compiled scenarios so later compiles can skip the sources.

    The snapshot holds scenarios with payload references already resolved.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def is_frozen(self) -> bool:
        return self.path.is_file()

    async def freeze(self, scenarios: List[Scenario]) -> None:
        """Write ``scenarios`` as the snapshot, replacing any previous one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        documents = [scenario.to_document() for scenario in scenarios]
        async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(documents, ensure_ascii=False))
        logger.info(f"Froze {len(scenarios)} scenario(s) to {self.path}")

    async def load(self) -> List[Scenario]:
        """
        Read the snapshot.

        Raises:
            CompilationError: If the snapshot cannot be read or parsed
        """
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                documents = json.loads(await f.read())
            return [Scenario.model_validate(document) for document in documents]
        except (OSError, ValueError) as e:
            raise CompilationError(f"Could not load frozen scenarios from {self.path}: {e}") from e

    async def unfreeze(self) -> bool:
        """Remove the snapshot. Returns True if one existed."""
        if not self.is_frozen():
            return False
        self.path.unlink()
        logger.info(f"Removed frozen scenarios {self.path}")
        return True

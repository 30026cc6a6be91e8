"""
Sources of scenario, payload and schema documents.

A workspace holds three directories:

    scenarios/<collection>/**/<scenario>.json|yaml
    payloads/<path>.json       referenced as "payload": "!<path>"
    schemas/<path>.json        referenced as "schema": "!<path>"
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import yaml

from apirunner.compiler.filters import MatchMode
from apirunner.constants import PAYLOAD_REFERENCE_PREFIX, SCENARIO_FILE_EXTENSIONS
from apirunner.exceptions import AssertionEvaluationError, CompilationError
from apirunner.logger import get_logger

logger = get_logger(__name__)


class ScenarioSource(ABC):
    """Provides raw scenario documents."""

    @abstractmethod
    async def read_all(
        self,
        collection_filter: Any = None,
        mode: MatchMode = MatchMode.EXACT
    ) -> List[Dict[str, Any]]:
        """
        Read every scenario document of the selected collections.

        Documents carry ``collection``, ``file`` and ``scenarioFile`` keys
        identifying where they came from. Unreadable documents are logged
        and skipped.

        Args:
            collection_filter: Collection filter, applied before documents are read
            mode: How the filter is matched

        Returns:
            List of raw scenario documents
        """
        pass


class PayloadLoader(ABC):
    """Resolves ``!path`` payload references."""

    @abstractmethod
    async def load(self, reference: str) -> Any:
        """
        Load a referenced payload.

        Raises:
            CompilationError: If the payload cannot be read or parsed
        """
        pass


class SchemaLoader(ABC):
    """Resolves ``!path`` JSON schema references."""

    @abstractmethod
    async def load(self, reference: str) -> Dict[str, Any]:
        """
        Load a referenced JSON schema.

        Raises:
            AssertionEvaluationError: If the schema cannot be read or parsed
        """
        pass


async def _read_text(path: Path) -> str:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return await f.read()


def parse_document(text: str, path: Path) -> Any:
    """
    Parse a JSON or YAML document by file extension.

    Raises:
        CompilationError: If the text is not valid for its format
    """
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        raise CompilationError(f"Parsing file {path} failed with the error {e}") from e


class DirectoryScenarioSource(ScenarioSource):
    """Scenario documents stored as files below ``scenarios/<collection>/``."""

    def __init__(self, scenarios_dir: Path):
        self.scenarios_dir = Path(scenarios_dir)

    def _collection_of(self, path: Path) -> Optional[str]:
        relative = path.relative_to(self.scenarios_dir)
        return relative.parts[0] if len(relative.parts) > 1 else None

    def list_files(self, collection_filter: Any = None, mode: MatchMode = MatchMode.EXACT) -> List[Path]:
        """Scenario files of the selected collections, hidden files excluded."""
        if not self.scenarios_dir.is_dir():
            logger.warning(f"Scenarios directory {self.scenarios_dir} does not exist")
            return []

        files = []
        for path in sorted(self.scenarios_dir.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in SCENARIO_FILE_EXTENSIONS:
                continue
            relative = path.relative_to(self.scenarios_dir)
            if any(part.startswith(".") for part in relative.parts):
                continue
            collection = self._collection_of(path)
            if collection is None:
                logger.debug(f"Skipping {path}: scenario files must be inside a collection directory")
                continue
            if mode.matches(collection_filter, collection):
                files.append(path)
        return files

    async def read_all(
        self,
        collection_filter: Any = None,
        mode: MatchMode = MatchMode.EXACT
    ) -> List[Dict[str, Any]]:
        files = self.list_files(collection_filter, mode)
        results = await asyncio.gather(*(self._read(path) for path in files), return_exceptions=True)

        documents = []
        for path, result in zip(files, results):
            if isinstance(result, CompilationError):
                logger.error(str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            documents.append(result)
        logger.debug(f"Read {len(documents)} scenario document(s) from {self.scenarios_dir}")
        return documents

    async def _read(self, path: Path) -> Dict[str, Any]:
        try:
            text = await _read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise CompilationError(f"Reading file {path} failed with the error {e}") from e

        document = parse_document(text, path)
        if not isinstance(document, dict):
            raise CompilationError(f"Scenario file {path} does not contain an object")

        document["collection"] = self._collection_of(path)
        document["file"] = path.relative_to(self.scenarios_dir).as_posix()
        document["scenarioFile"] = path.stem
        return document


class InMemoryScenarioSource(ScenarioSource):
    """Scenario documents supplied directly, e.g. when embedding the engine."""

    def __init__(self, documents: List[Dict[str, Any]]):
        self.documents = documents

    async def read_all(
        self,
        collection_filter: Any = None,
        mode: MatchMode = MatchMode.EXACT
    ) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(document)
            for document in self.documents
            if mode.matches(collection_filter, document.get("collection"))
        ]


class DirectoryPayloadLoader(PayloadLoader):
    """Payloads stored as JSON files below ``payloads/``."""

    def __init__(self, payloads_dir: Path):
        self.payloads_dir = Path(payloads_dir)

    def path_for(self, reference: str) -> Path:
        relative = reference[len(PAYLOAD_REFERENCE_PREFIX):] if reference.startswith(PAYLOAD_REFERENCE_PREFIX) else reference
        if not relative.endswith(".json"):
            relative = f"{relative}.json"
        return self.payloads_dir.joinpath(*relative.replace("\\", "/").split("/"))

    async def load(self, reference: str) -> Any:
        path = self.path_for(reference)
        try:
            text = await _read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise CompilationError(f"Could not read payload {reference} from {path}: {e}") from e
        return parse_document(text, path)


class DirectorySchemaLoader(SchemaLoader):
    """
    JSON schemas stored below ``schemas/``.

    ``!users/list``, ``users/list.json`` and ``users.list`` all resolve to
    ``schemas/users/list.json``.
    """

    def __init__(self, schemas_dir: Path):
        self.schemas_dir = Path(schemas_dir)

    def path_for(self, reference: str) -> Path:
        name = reference.replace(PAYLOAD_REFERENCE_PREFIX, "").replace(".json", "")
        name = name.replace("/", ".").replace("\\", ".")
        parts = [part for part in name.split(".") if part]
        return self.schemas_dir.joinpath(*parts).with_suffix(".json")

    async def load(self, reference: str) -> Dict[str, Any]:
        path = self.path_for(reference)
        try:
            text = await _read_text(path)
            return json.loads(text)
        except (OSError, ValueError) as e:
            raise AssertionEvaluationError(f"Could not load schema file {path}: {e}") from e

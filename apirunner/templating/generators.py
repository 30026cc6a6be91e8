"""
Value generators available to templates.

Provides the reserved time/date functions, the named datasets used by
``{dataset.<name>}`` placeholders and the ``{lorem_N}`` filler text generator.
"""

import json
import random
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from faker import Faker

from apirunner.config import settings
from apirunner.constants import (
    DATASET_NAMES_KEY,
    DATASET_SOURCES,
    LOREM_MIN_SENTENCE_LENGTH,
    LOREM_SANITIZED_CHARS,
)
from apirunner.logger import get_logger
from apirunner.templating.scope import Generator

logger = get_logger(__name__)

BUNDLED_DATASETS = Path(__file__).parent / "res" / "datasets.json"


def _now() -> datetime:
    return datetime.now()


TIME_FUNCTIONS: Dict[str, Callable[[], Any]] = {
    "timestamp_n": lambda: int(datetime.now(timezone.utc).timestamp() * 1000),
    "timestamp": lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    "time": lambda: _now().strftime("%H:%M:%S"),
    "time_ms": lambda: _now().microsecond // 1000,
    "time_sec": lambda: _now().second,
    "time_min": lambda: _now().minute,
    "time_hours": lambda: _now().hour,
    "date": lambda: _now().strftime("%m/%d/%Y"),
    "date_date": lambda: _now().day,
    "date_month": lambda: _now().month,
    "date_month_name_long": lambda: _now().strftime("%B"),
    "date_month_name": lambda: _now().strftime("%b"),
    "date_year": lambda: _now().year,
}


def time_generators() -> Dict[str, Generator]:
    """The time/date functions wrapped as scope generators."""
    return {name: Generator(factory) for name, factory in TIME_FUNCTIONS.items()}


class DataSets:
    """
    Named lists of sample values for ``{dataset.<name>}`` placeholders.

    The bundled lists are merged with an optional user supplied JSON file
    mapping names to lists. ``names`` is the union of the bundled lists and
    ``name`` is accepted as an alias for it.
    """

    def __init__(self, data: Dict[str, List[Any]]):
        self.data = {key.lower(): list(values) for key, values in data.items() if isinstance(values, list)}
        if DATASET_NAMES_KEY not in self.data:
            self.data[DATASET_NAMES_KEY] = [
                value
                for source in DATASET_SOURCES
                for value in self.data.get(source, [])
            ]

    @classmethod
    def load(cls, extra_file: Optional[str] = None) -> "DataSets":
        """
        Load the bundled datasets and merge an optional extra file.

        Args:
            extra_file: Path of a JSON file with additional datasets

        Returns:
            DataSets: The loaded datasets
        """
        data = json.loads(BUNDLED_DATASETS.read_text(encoding="utf-8"))
        if extra_file:
            path = Path(extra_file)
            try:
                data.update(json.loads(path.read_text(encoding="utf-8")))
                logger.debug(f"Loaded extra datasets from {path}")
            except (OSError, ValueError) as e:
                logger.error(f"Could not load datasets file {path}: {e}")
        return cls(data)

    @property
    def names(self) -> List[str]:
        return list(self.data)

    def has(self, name: str) -> bool:
        return self._key(name) in self.data

    def pick(self, name: str) -> Any:
        """Pick one random element of the named dataset."""
        values = self.data.get(self._key(name)) or []
        if not values:
            return ""
        return random.choice(values)

    @staticmethod
    def _key(name: str) -> str:
        key = name.lower()
        return DATASET_NAMES_KEY if key == "name" else key


@lru_cache(maxsize=1)
def default_datasets() -> DataSets:
    """Datasets loaded once per process from the bundled file and settings."""
    return DataSets.load(settings.datasets_file)


class LoremGenerator:
    """Builds filler text of an exact length from generated sentences."""

    def __init__(self, seed: Optional[int] = None):
        self._seed = seed
        self._faker: Optional[Faker] = None

    @property
    def faker(self) -> Faker:
        """Lazy load Faker"""
        if self._faker is None:
            self._faker = Faker()
            if self._seed is not None:
                self._faker.seed_instance(self._seed)
        return self._faker

    def generate(self, length: int) -> str:
        """
        Generate ``length`` characters of text ending with a period.

        Characters that would start a new placeholder or break JSON
        (``"{}[]``) are replaced with single quotes.

        Args:
            length: Exact number of characters to produce

        Returns:
            str: The generated text
        """
        if length < 1:
            return ""
        if length < LOREM_MIN_SENTENCE_LENGTH:
            return "x" * (length - 1) + "."

        text = ""
        while len(text) < length:
            sentence = self.faker.paragraph(nb_sentences=10)
            for char in LOREM_SANITIZED_CHARS:
                sentence = sentence.replace(char, "'")
            text = f"{text} {sentence}" if text else sentence

        return text[:length - 1] + "."


lorem = LoremGenerator()

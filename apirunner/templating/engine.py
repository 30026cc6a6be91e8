"""
Placeholder substitution for strings and JSON documents.

Placeholders have the form ``{name}``. A placeholder is resolved, in order, as
a reserved time/date function, a ``dataset.<name>`` pick, a ``lorem_<N>``
filler, a scope variable, or a dotted path into an object variable.
Placeholders that resolve to nothing are left untouched.

Plain strings shorter than 99 characters are afterwards treated as regular
expressions and expanded into one matching string, so ``"[a-z]{8}"`` yields
eight random letters. Substituted values are escaped first and never act as
patterns themselves.
"""

import copy
import json
import re
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Union

import rstr
from pydantic import BaseModel, Field

from apirunner.constants import REGEX_EXPANSION_MAX_LENGTH, URL_SPECIAL_CHARS
from apirunner.exceptions import TemplateError
from apirunner.logger import get_logger
from apirunner.templating.generators import TIME_FUNCTIONS, DataSets, LoremGenerator, default_datasets, lorem
from apirunner.templating.paths import extract_or_none
from apirunner.templating.scope import Scope
from apirunner.utils.helpers import stringify, to_json_text

logger = get_logger(__name__)

_NAME = r"[A-Za-z_][\w.\-/]*"
TOKEN_PATTERN = re.compile(r"\{(" + _NAME + r")\}")
JSON_TOKEN_PATTERN = re.compile(r'"\{(' + _NAME + r')\}"|\{(' + _NAME + r")\}")
LOREM_PATTERN = re.compile(r"lorem_(\d+)")
DATASET_PREFIX = "dataset."

_MISSING = object()


class ResolvedRequest(BaseModel):
    """URL, payload and headers of an endpoint after substitution."""

    url: str = Field(..., description="Resolved endpoint URL")
    payload: Any = Field(default=None, description="Resolved request payload")
    headers: Dict[str, str] = Field(default_factory=dict, description="Resolved extra headers")


class TemplateEngine:
    """
    Resolves placeholders against a variable scope.

    The engine keeps no state between calls apart from its generators, so one
    instance can be shared by every concurrent branch.
    """

    def __init__(
        self,
        datasets: Optional[DataSets] = None,
        lorem_generator: Optional[LoremGenerator] = None
    ):
        self._datasets = datasets
        self.lorem = lorem_generator or lorem

    @property
    def datasets(self) -> DataSets:
        if self._datasets is None:
            self._datasets = default_datasets()
        return self._datasets

    def resolve(
        self,
        template: Any,
        variables: Optional[Union[Scope, Mapping[str, Any]]] = None,
        use_regex: bool = True
    ) -> Any:
        """
        Resolve every placeholder in ``template``.

        Args:
            template: A string, or a dict/list resolved as a JSON document
            variables: Scope or mapping the placeholders are resolved against
            use_regex: Expand short plain strings as regular expressions

        Returns:
            The resolved string or object. Non-string scalars are returned as is.

        Raises:
            TemplateError: If an object template cannot be serialized or parsed back
        """
        scope = Scope.of(variables)
        if isinstance(template, (dict, list)):
            return self._resolve_object(template, scope)
        if not isinstance(template, str):
            return template
        return self._resolve_string(template, scope, use_regex)

    def resolve_endpoint(self, endpoint: Any, scope: Scope) -> ResolvedRequest:
        """
        Apply local variable aliases and resolve URL, payload and headers.

        Aliases are written into ``scope`` so later placeholders can use them.
        URL characters ``?$&()`` are protected from regex expansion.

        Args:
            endpoint: The endpoint to resolve
            scope: Scope of this execution, updated with the aliases

        Returns:
            ResolvedRequest: The request ready to send
        """
        for alias, template in (endpoint.variables or {}).items():
            scope[alias] = self.resolve(template, scope)

        url = endpoint.url or ""
        for char in URL_SPECIAL_CHARS:
            url = url.replace(char, "\\" + char)
        url = stringify(self.resolve(url, scope))
        for char in URL_SPECIAL_CHARS:
            url = url.replace("\\" + char, char)

        payload = self.resolve(endpoint.payload, scope)
        headers = {
            name: stringify(self.resolve(value, scope, use_regex=False))
            for name, value in (endpoint.headers or {}).items()
        }
        return ResolvedRequest(url=url, payload=payload, headers=headers)

    def _lookup(self, token: str, scope: Scope) -> Any:
        if token in TIME_FUNCTIONS:
            return TIME_FUNCTIONS[token]()

        if token.startswith(DATASET_PREFIX):
            name = token[len(DATASET_PREFIX):]
            if self.datasets.has(name):
                return self.datasets.pick(name)

        lorem_match = LOREM_PATTERN.fullmatch(token)
        if lorem_match:
            return self.lorem.generate(int(lorem_match.group(1)))

        if token in scope:
            return scope[token]

        if "." in token:
            head, path = token.split(".", 1)
            if head in scope:
                value = scope[head]
                if isinstance(value, (dict, list)):
                    return extract_or_none(copy.deepcopy(value), path)

        return _MISSING

    def _resolve_string(self, template: str, scope: Scope, use_regex: bool) -> Any:
        match = TOKEN_PATTERN.fullmatch(template)
        if match:
            value = self._lookup(match.group(1), scope)
            if isinstance(value, (dict, list)):
                return copy.deepcopy(value)

        plain = []
        pattern = []
        embedded_object = False
        last = 0

        for match in TOKEN_PATTERN.finditer(template):
            literal = template[last:match.start()]
            plain.append(literal)
            pattern.append(literal)
            last = match.end()

            value = self._lookup(match.group(1), scope)
            if value is _MISSING:
                plain.append(match.group(0))
                pattern.append(match.group(0))
                continue

            if isinstance(value, (dict, list)):
                embedded_object = True
                rendered = self._to_json(value)
            else:
                rendered = stringify(value)
            plain.append(rendered)
            pattern.append(re.escape(rendered))

        plain.append(template[last:])
        pattern.append(template[last:])
        result = "".join(plain)

        if use_regex and not embedded_object and result != "{}" and len(result) < REGEX_EXPANSION_MAX_LENGTH:
            return self._expand("".join(pattern), result)
        return result

    def _resolve_object(self, template: Any, scope: Scope) -> Any:
        text = self._to_json(template)

        def replace(match: "re.Match[str]") -> str:
            quoted = match.group(1) is not None
            token = match.group(1) if quoted else match.group(2)
            value = self._lookup(token, scope)
            if value is _MISSING:
                return match.group(0)
            if quoted and isinstance(value, (dict, list)):
                return self._to_json(value)
            rendered = self._to_json(value) if isinstance(value, (dict, list)) else stringify(value)
            escaped = json.dumps(rendered, ensure_ascii=False)[1:-1]
            return f'"{escaped}"' if quoted else escaped

        text = JSON_TOKEN_PATTERN.sub(replace, text)
        try:
            return json.loads(text)
        except ValueError as e:
            raise TemplateError(f"Resolved template is not valid JSON: {e}") from e

    @staticmethod
    def _to_json(value: Any) -> str:
        try:
            return to_json_text(value)
        except (TypeError, ValueError) as e:
            raise TemplateError(f"Value cannot be embedded as JSON: {e}") from e

    @staticmethod
    def _expand(pattern: str, fallback: str) -> str:
        try:
            return rstr.xeger(pattern)
        except (re.error, KeyError, ValueError, IndexError, TypeError) as e:
            logger.debug(f"'{fallback}' is not an expandable pattern, using it verbatim: {e}")
            return fallback


@lru_cache(maxsize=1)
def default_engine() -> TemplateEngine:
    """Process wide engine using the default datasets."""
    return TemplateEngine()


def resolve(
    template: Any,
    variables: Optional[Union[Scope, Mapping[str, Any]]] = None,
    use_regex: bool = True
) -> Any:
    """Resolve ``template`` with the default engine. See ``TemplateEngine.resolve``."""
    return default_engine().resolve(template, variables, use_regex)

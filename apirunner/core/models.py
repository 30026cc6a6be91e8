"""Core data models for APIRunner."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from apirunner.constants import (
    DEFAULT_HTTP_METHOD,
    FAILED_STATUS,
    EndpointState,
    ExecutionStatus,
)
from apirunner.exceptions import ConfigurationError
from apirunner.utils.helpers import endpoint_id, parse_key_value_list


class DocumentModel(BaseModel):
    """Base for models backed by scenario documents; unknown keys are preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize using the document key names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Dependency(DocumentModel):
    """A reference from an endpoint to another endpoint it needs data from."""

    api: str
    collection: Optional[str] = None
    scenario: Optional[str] = None
    variable: Optional[Union[str, Dict[str, str]]] = None
    path: Optional[str] = None
    variables: Optional[Dict[str, Any]] = None
    repeat: Optional[int] = None
    cache: Optional[bool] = None

    def extraction_map(self) -> Dict[str, str]:
        """Variable name to path mapping, for both the single and the map form."""
        if isinstance(self.variable, dict):
            return dict(self.variable)
        if self.variable:
            return {self.variable: self.path or ""}
        return {}


class Endpoint(DocumentModel):
    """One templated HTTP call definition within a scenario."""

    name: str
    url: str = ""
    method: str = DEFAULT_HTTP_METHOD
    payload: Any = None
    payload_key: Optional[str] = Field(default=None, alias="payloadKey")
    variables: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[Dependency] = Field(default_factory=list)
    expect: Dict[str, Any] = Field(default_factory=dict)
    repeat_until: Optional[Dict[str, Any]] = Field(default=None, alias="repeat-until")
    repeat: int = 1
    repeat_delay: Optional[int] = Field(default=None, alias="repeat-delay")
    delay: Optional[int] = None
    timeout: Optional[int] = None
    cache: bool = False
    async_: bool = Field(default=False, alias="async")
    ignore: bool = False
    system: Optional[str] = None
    language: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    scripts: Dict[str, str] = Field(default_factory=dict)

    # Filled in by the compiler
    collection: Optional[str] = None
    scenario: Optional[str] = None
    scenario_file: Optional[str] = Field(default=None, alias="scenarioFile")
    dependency_level: int = Field(default=0, alias="dependencyLevel")

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return (v or DEFAULT_HTTP_METHOD).upper()

    @field_validator("repeat", mode="before")
    @classmethod
    def validate_repeat(cls, v: Any) -> int:
        """Repeat counts below one run the endpoint once."""
        try:
            count = int(v)
        except (TypeError, ValueError):
            return 1
        return max(count, 1)

    @field_validator("scripts", mode="before")
    @classmethod
    def join_script_lines(cls, v: Any) -> Dict[str, str]:
        return _join_scripts(v)

    @field_validator("variables", "headers", "expect", mode="before")
    @classmethod
    def default_empty_dict(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @property
    def id(self) -> str:
        return endpoint_id(self.collection, self.scenario, self.name)


class Scenario(DocumentModel):
    """A named group of endpoints sharing setup, teardown and generated variables."""

    name: str
    collection: Optional[str] = None
    file: Optional[str] = None
    scenario_file: Optional[str] = Field(default=None, alias="scenarioFile")
    endpoints: List[Endpoint] = Field(default_factory=list)
    generate: Dict[str, Any] = Field(default_factory=dict)
    scripts: Dict[str, str] = Field(default_factory=dict)
    ignore: bool = False

    @field_validator("scripts", mode="before")
    @classmethod
    def join_script_lines(cls, v: Any) -> Dict[str, str]:
        return _join_scripts(v)

    @field_validator("generate", mode="before")
    @classmethod
    def default_empty_generate(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @property
    def file_stem(self) -> Optional[str]:
        source = self.scenario_file or self.file
        return Path(source).stem if source else None


def _join_scripts(value: Any) -> Dict[str, str]:
    if not value:
        return {}
    return {
        kind: "\n".join(script) if isinstance(script, list) else str(script)
        for kind, script in value.items()
    }


class AssertionResult(BaseModel):
    """Outcome of one expectation check."""

    test: str
    expected: Any = None
    obtained: Any = None
    result: bool = False


class ResponseData(BaseModel):
    """Response of one call as seen by assertions and extraction paths."""

    response: Any = None
    status: int = FAILED_STATUS
    message: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    timing: Dict[str, Any] = Field(default_factory=dict)
    full_url: Optional[str] = None

    @classmethod
    def from_transport(cls, response: Any) -> "ResponseData":
        return cls(
            response=response.body,
            status=response.status,
            headers=response.headers,
            timing=response.timing,
            full_url=response.full_url,
        )

    @classmethod
    def failed(cls, message: str) -> "ResponseData":
        return cls(response={}, status=FAILED_STATUS, message=message)


class ExecutionRecord(BaseModel):
    """One execution (one repeat) of an endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: Optional[int] = None
    collection: Optional[str] = None
    scenario: Optional[str] = None
    name: str
    url: Optional[str] = None
    method: str = DEFAULT_HTTP_METHOD
    payload: Any = None
    full_url: Optional[str] = None
    range_index: int = 1
    dependency_level: int = 0
    result: Optional[ResponseData] = Field(default=None, alias="_result")
    status: bool = Field(default=False, alias="_status")
    expect: List[AssertionResult] = Field(default_factory=list, alias="_expect")
    variables: Dict[str, Any] = Field(default_factory=dict, alias="_variables")
    state: EndpointState = EndpointState.PENDING
    transitions: List[EndpointState] = Field(default_factory=list)
    cached: bool = False
    started_at: Optional[int] = None

    @property
    def http_status(self) -> int:
        return self.result.status if self.result else FAILED_STATUS

    @property
    def message(self) -> Optional[str]:
        return self.result.message if self.result else None

    @property
    def id(self) -> str:
        return endpoint_id(self.collection, self.scenario, self.name)


class EndpointResult(BaseModel):
    """Aggregated outcome of every execution of one endpoint."""

    name: str
    collection: Optional[str] = None
    scenario: Optional[str] = None
    executions: List[ExecutionRecord] = Field(default_factory=list)
    status: bool = False
    state: EndpointState = EndpointState.PENDING
    time: int = 0
    message: Optional[str] = None

    @property
    def id(self) -> str:
        return endpoint_id(self.collection, self.scenario, self.name)

    @property
    def last(self) -> Optional[ExecutionRecord]:
        return self.executions[-1] if self.executions else None


class ScenarioResult(BaseModel):
    """Outcome of one scenario."""

    name: str
    collection: Optional[str] = None
    file: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.FAIL
    endpoints: List[EndpointResult] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    timing: int = 0
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def endpoint(self, name: str) -> Optional[EndpointResult]:
        return next((result for result in self.endpoints if result.name == name), None)


class JobSummary(BaseModel):
    """Aggregate counts of one job."""

    job_id: int
    status: bool = False
    scenarios: int = 0
    endpoints_executed: int = 0
    endpoints_successful: int = 0
    assertions_processed: int = 0
    assertions_successful: int = 0
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def duration(self) -> int:
        if self.started_at is None or self.finished_at is None:
            return 0
        return self.finished_at - self.started_at


class JobResult(BaseModel):
    """Everything produced by one job."""

    job_id: int
    scenarios: List[ScenarioResult] = Field(default_factory=list)
    summary: JobSummary

    @property
    def passed(self) -> bool:
        return self.summary.status


class RunOptions(BaseModel):
    """Options of one job."""

    variables: Union[str, Dict[str, Any], None] = None
    systems: Union[str, Dict[str, str], None] = None
    sync: bool = False
    report: Optional[str] = None
    job_id: Optional[int] = None

    def variable_overrides(self) -> Dict[str, Any]:
        """
        User variables as a dictionary.

        Raises:
            ConfigurationError: If the ``k=v,k2=v2`` form is malformed
        """
        return self._as_dict(self.variables, "variables")

    def system_aliases(self) -> Dict[str, str]:
        """
        System selection as alias to system name.

        Raises:
            ConfigurationError: If the ``alias=system`` form is malformed
        """
        return self._as_dict(self.systems, "systems")

    @staticmethod
    def _as_dict(value: Union[str, Dict[str, Any], None], option: str) -> Dict[str, Any]:
        if not value:
            return {}
        if isinstance(value, dict):
            return dict(value)
        try:
            return parse_key_value_list(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid {option} option: {e}") from e

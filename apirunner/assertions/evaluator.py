"""
Scoring of responses against endpoint expectations.

An ``expect`` block may declare:

    status: expected HTTP status (default 200)
    header: {name: expected substring}
    response: {test name: boolean expression, schema: "!path/to/schema"}
    timing: {timing key: number or comparison such as "< 2000"}

Every check produces ``AssertionResult`` entries, in the order status,
header, body, schema, timing.
"""

from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft6Validator
from jsonschema.exceptions import SchemaError, UnknownType
from referencing.exceptions import Unresolvable

from apirunner.assertions.sandbox import ScriptSandbox
from apirunner.constants import DEFAULT_EXPECTED_STATUS
from apirunner.core.models import AssertionResult, Endpoint, ResponseData
from apirunner.exceptions import AssertionEvaluationError, ScriptExecutionError, TemplateError
from apirunner.logger import get_logger
from apirunner.templating.engine import TemplateEngine, default_engine
from apirunner.templating.scope import Scope
from apirunner.utils.helpers import is_number

logger = get_logger(__name__)

SCHEMA_KEY = "schema"


class AssertionEvaluator:
    """Evaluates status, header, body, schema and timing expectations."""

    def __init__(
        self,
        sandbox: ScriptSandbox,
        schema_loader: Optional[Any] = None,
        engine: Optional[TemplateEngine] = None
    ):
        """
        Args:
            sandbox: Sandbox evaluating body and timing expressions
            schema_loader: ``SchemaLoader`` resolving ``schema`` references
            engine: Template engine for body expressions
        """
        self.sandbox = sandbox
        self.schema_loader = schema_loader
        self.engine = engine or default_engine()

    async def evaluate(
        self,
        endpoint: Endpoint,
        response: ResponseData,
        variables: Optional[Mapping[str, Any]] = None
    ) -> List[AssertionResult]:
        """Score ``response`` against the ``expect`` block of ``endpoint``."""
        return await self.evaluate_expectations(endpoint.expect, response, variables)

    async def evaluate_expectations(
        self,
        expect: Optional[Dict[str, Any]],
        response: ResponseData,
        variables: Optional[Mapping[str, Any]] = None
    ) -> List[AssertionResult]:
        """
        Score ``response`` against an ``expect`` block.

        Args:
            expect: The expectations
            response: The observed response
            variables: Scope used to resolve placeholders in body expressions

        Returns:
            List[AssertionResult]: Results of every check
        """
        expect = expect or {}
        body_expect = expect.get("response") if isinstance(expect.get("response"), dict) else {}

        results = [self.check_status(expect, response)]
        results.extend(self.check_headers(expect.get("header") or expect.get("headers") or {}, response))
        results.extend(self.check_body(body_expect, response, variables))
        if body_expect.get(SCHEMA_KEY):
            results.extend(await self.check_schema(body_expect[SCHEMA_KEY], response))
        results.extend(self.check_timing(expect.get("timing") or {}, response))
        return results

    @staticmethod
    def expected_status(expect: Optional[Dict[str, Any]]) -> int:
        status = (expect or {}).get("status")
        return int(status) if status else DEFAULT_EXPECTED_STATUS

    def check_status(self, expect: Dict[str, Any], response: ResponseData) -> AssertionResult:
        expected = self.expected_status(expect)
        return AssertionResult(
            test="Response status",
            expected=expected,
            obtained=response.status,
            result=response.status == expected
        )

    def check_headers(self, expected_headers: Dict[str, Any], response: ResponseData) -> List[AssertionResult]:
        headers = {str(name).lower(): value for name, value in (response.headers or {}).items()}
        results = []
        for name, expected in expected_headers.items():
            key = name.lower()
            obtained = headers.get(key)
            results.append(AssertionResult(
                test=f"Response header [{key}]",
                expected=expected,
                obtained=obtained,
                result=obtained is not None and str(expected) in str(obtained)
            ))
        return results

    def check_body(
        self,
        body_expect: Dict[str, Any],
        response: ResponseData,
        variables: Optional[Mapping[str, Any]]
    ) -> List[AssertionResult]:
        scope = Scope.of(variables).merged({"response": response.response})
        results = []
        for test, template in body_expect.items():
            if test == SCHEMA_KEY:
                continue
            expression = template
            try:
                expression = self.engine.resolve(template, scope, use_regex=False)
                logger.info(f"Running comparison {expression}")
                obtained = self.sandbox.evaluate(expression) if isinstance(expression, str) else expression
            except (TemplateError, ScriptExecutionError) as e:
                logger.warning(f"Could not evaluate assertion '{test}': {e}")
                results.append(AssertionResult(test=test, expected=expression, obtained=str(e), result=False))
                continue
            results.append(AssertionResult(test=test, expected=expression, obtained=obtained, result=obtained is True))
        return results

    async def check_schema(self, reference: str, response: ResponseData) -> List[AssertionResult]:
        try:
            if self.schema_loader is None:
                raise AssertionEvaluationError("No schema loader configured")
            schema = await self.schema_loader.load(reference)
        except AssertionEvaluationError as e:
            logger.error(f"Could not load schema {reference}: {e}")
            return [_schema_failure(reference, "Could not load schema")]

        try:
            Draft6Validator.check_schema(schema)
            validator = Draft6Validator(schema)
            errors = sorted(validator.iter_errors(response.response), key=lambda error: [str(part) for part in error.path])
        except SchemaError as e:
            logger.error(f"Invalid schema {reference}: {e.message}")
            return [_schema_failure(reference, f"Invalid schema: {e.message}")]
        except (UnknownType, Unresolvable) as e:
            logger.error(f"Invalid schema {reference}: {e}")
            return [_schema_failure(reference, f"Invalid schema: {e}")]

        if not errors:
            return [AssertionResult(test="Response schema", expected=reference, obtained=[], result=True)]

        results = []
        for error in errors:
            message = _describe_schema_error(error)
            results.append(AssertionResult(
                test=f"Response schema [{message}]",
                expected=message,
                obtained="",
                result=False
            ))
        return results

    def check_timing(self, timing_expect: Dict[str, Any], response: ResponseData) -> List[AssertionResult]:
        results = []
        for key, bound in timing_expect.items():
            observed = (response.timing or {}).get(key)
            if is_number(bound):
                passed = observed is not None and is_number(observed) and float(observed) == float(bound)
            else:
                try:
                    passed = self.sandbox.evaluate(f"{observed} {bound}") is True
                except ScriptExecutionError as e:
                    logger.warning(f"Could not evaluate timing bound '{key} {bound}': {e}")
                    passed = False
            results.append(AssertionResult(
                test=f"Response timing [{key}]",
                expected=bound,
                obtained=observed,
                result=passed
            ))
        return results


def _describe_schema_error(error) -> str:
    """Readable description of a jsonschema validation error."""
    if error.validator in ("required", "additionalProperties"):
        return error.message
    location = "/".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


def _schema_failure(reference: str, reason: str) -> AssertionResult:
    return AssertionResult(test="Response schema", expected=reference, obtained=[reason], result=False)

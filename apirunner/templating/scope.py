"""
Variable scopes.

A scope maps names to variables. A variable is either a ``Literal`` holding a
JSON value or a ``Generator`` producing a fresh value every time it is read.
Generators are invoked at substitution time, never when they are stored.
"""

from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional


class Variable:
    """Base class of the variable variants."""

    def resolve(self) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Variable):
    """A variable with a fixed JSON value."""

    value: Any

    def resolve(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Generator(Variable):
    """A variable whose value is produced by calling ``factory``."""

    factory: Callable[[], Any]

    def resolve(self) -> Any:
        return self.factory()


def as_variable(value: Any) -> Variable:
    """Wrap a raw value into a variable, leaving variables untouched."""
    if isinstance(value, Variable):
        return value
    return Literal(value)


class Scope(MutableMapping):
    """
    Mutable name to variable mapping threaded through execution.

    Reading an item resolves the variable, so generators yield a new value on
    every access. Writing an item wraps plain values into ``Literal``. Each
    concurrent branch works on its own ``copy()``.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._variables: Dict[str, Variable] = {}
        if isinstance(values, Scope):
            self._variables.update(values._variables)
        elif values:
            self.update(values)

    @classmethod
    def of(cls, values: Any) -> "Scope":
        """Return ``values`` if it already is a scope, otherwise wrap it."""
        if isinstance(values, Scope):
            return values
        return cls(values or {})

    def __getitem__(self, name: str) -> Any:
        return self._variables[name].resolve()

    def __setitem__(self, name: str, value: Any) -> None:
        self._variables[name] = as_variable(value)

    def __delitem__(self, name: str) -> None:
        del self._variables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __repr__(self) -> str:
        return f"Scope({self.literals()!r})"

    def variable(self, name: str) -> Variable:
        """Return the stored variable without resolving it."""
        return self._variables[name]

    def copy(self) -> "Scope":
        clone = Scope()
        clone._variables = dict(self._variables)
        return clone

    def merged(self, *others: Optional[Mapping[str, Any]]) -> "Scope":
        """Return a copy with ``others`` layered on top, later ones winning."""
        clone = self.copy()
        for other in others:
            if not other:
                continue
            if isinstance(other, Scope):
                clone._variables.update(other._variables)
            else:
                clone.update(other)
        return clone

    def literals(self) -> Dict[str, Any]:
        """Snapshot of the literal values, generators excluded."""
        return {
            name: variable.value
            for name, variable in self._variables.items()
            if isinstance(variable, Literal)
        }

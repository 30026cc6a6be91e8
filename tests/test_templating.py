"""Tests for placeholder substitution, scopes and value generators."""

import itertools
import re
from datetime import datetime

import pytest

from apirunner.core.models import Endpoint
from apirunner.exceptions import TemplateError
from apirunner.templating import DataSets, Generator, LoremGenerator, Scope, TemplateEngine, default_datasets, resolve


@pytest.fixture
def engine() -> TemplateEngine:
    return TemplateEngine(datasets=DataSets({"colors": ["red", "green", "blue"]}), lorem_generator=LoremGenerator(seed=7))


@pytest.mark.parametrize("text", ["plain text", "/users/all", "no placeholders here", "Hello World"])
def test_resolving_plain_strings_is_idempotent(text):
    assert resolve(resolve(text, {}), {}) == text


def test_short_plain_strings_expand_as_regex():
    value = resolve("[a-z]{8}")
    assert re.fullmatch(r"[a-z]{8}", value)


def test_regex_expansion_can_be_disabled():
    assert resolve("[a-z]{8}", use_regex=False) == "[a-z]{8}"


def test_long_strings_are_not_expanded():
    template = "[a-z]" * 20
    assert resolve(template) == template


def test_variable_substitution():
    assert resolve("/users/{id}/orders", {"id": 42}) == "/users/42/orders"


def test_substituted_values_are_not_patterns():
    assert resolve("{value}", {"value": "[a-z]+"}) == "[a-z]+"


def test_unknown_placeholders_are_left_untouched():
    assert resolve("{missing}", {}, use_regex=False) == "{missing}"
    assert resolve({"id": "{missing}"}, {}) == {"id": "{missing}"}


def test_single_object_placeholder_returns_a_copy():
    user = {"id": 1, "tags": ["a"]}
    value = resolve("{user}", {"user": user})
    assert value == user
    value["tags"].append("b")
    assert user["tags"] == ["a"]


def test_object_embedded_in_string_is_serialized():
    assert resolve("data={obj}", {"obj": {"a": 1}}) == 'data={"a":1}'


def test_dotted_placeholder_reads_into_objects():
    scope = {"user": {"profile": {"name": "ada"}}}
    assert resolve("{user.profile.name}", scope, use_regex=False) == "ada"


def test_object_templates():
    template = {"id": "{id}", "count": "{count}", "nested": ["{name}", "hi {name}!"], "user": "{user}"}
    variables = {"id": "x-1", "count": 5, "name": "bob", "user": {"role": "admin"}}

    assert resolve(template, variables) == {
        "id": "x-1",
        "count": "5",
        "nested": ["bob", "hi bob!"],
        "user": {"role": "admin"},
    }


def test_object_templates_escape_quotes():
    assert resolve({"message": "{text}"}, {"text": 'say "hi"'}) == {"message": 'say "hi"'}


def test_object_template_with_unserializable_value_fails():
    with pytest.raises(TemplateError):
        resolve({"value": object()}, {})


def test_non_string_scalars_are_returned_as_is():
    assert resolve(12) == 12
    assert resolve(None) is None
    assert resolve(True) is True


def test_generators_run_at_substitution_time():
    counter = itertools.count(1)
    scope = Scope({"next": Generator(lambda: next(counter))})

    assert resolve("{next}", scope, use_regex=False) == "1"
    assert resolve("{next}", scope, use_regex=False) == "2"


def test_time_functions():
    assert resolve("{date_year}", use_regex=False) == str(datetime.now().year)
    assert resolve("{timestamp_n}", use_regex=False).isdigit()
    assert 1 <= int(resolve("{date_month}", use_regex=False)) <= 12


def test_dataset_placeholders_pick_independently(engine):
    values = set()
    for _ in range(50):
        first, second = engine.resolve("{dataset.colors}-{dataset.colors}", use_regex=False).split("-")
        assert first in ("red", "green", "blue")
        assert second in ("red", "green", "blue")
        values.add((first, second))
    assert any(first != second for first, second in values)


def test_bundled_names_dataset():
    datasets = default_datasets()
    assert datasets.has("names")
    assert datasets.has("name")
    assert datasets.pick("name") in datasets.data["names"]
    assert "Yoda" in datasets.data["names"]


def test_lorem_placeholder_has_exact_length(engine):
    text = engine.resolve("{lorem_120}", use_regex=False)
    assert len(text) == 120
    assert text.endswith(".")
    assert not set('"{}[]') & set(text)


@pytest.mark.parametrize("length, expected", [(0, ""), (-3, ""), (1, "."), (5, "xxxx.")])
def test_short_lorem(length, expected):
    assert LoremGenerator().generate(length) == expected


def test_resolve_endpoint(engine):
    endpoint = Endpoint(
        name="search",
        url="/items?id={id}&sort=(asc)",
        method="post",
        payload={"id": "{id}", "trace": "{trace}"},
        headers={"X-Trace": "{trace}"},
        variables={"id": "{base_id}"},
    )
    scope = Scope({"base_id": "7", "trace": "t-1"})

    request = engine.resolve_endpoint(endpoint, scope)

    assert request.url == "/items?id=7&sort=(asc)"
    assert request.payload == {"id": "7", "trace": "t-1"}
    assert request.headers == {"X-Trace": "t-1"}
    assert scope["id"] == "7"


def test_scope_layers_and_copies():
    base = Scope({"a": 1, "b": 2})
    merged = base.merged({"b": 3}, None, {"c": 4})
    clone = merged.copy()
    clone["a"] = 10

    assert dict(merged) == {"a": 1, "b": 3, "c": 4}
    assert base["b"] == 2
    assert merged["a"] == 1


def test_scope_literals_exclude_generators():
    scope = Scope({"a": 1, "now": Generator(lambda: 5)})
    assert scope.literals() == {"a": 1}
    assert scope["now"] == 5

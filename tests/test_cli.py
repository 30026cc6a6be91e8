"""Tests for the command-line interface."""

import json

import httpx
import pytest
from click.testing import CliRunner

from apirunner import __version__
from apirunner.cli import cli
from apirunner.config import SystemConfig, settings
from apirunner.transport import HttpxTransport


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    scenarios = tmp_path / "tests" / "scenarios" / "users"
    scenarios.mkdir(parents=True)
    (scenarios / "crud.json").write_text(json.dumps({
        "name": "crud",
        "endpoints": [
            {"name": "create user", "url": "/users", "method": "post", "expect": {"status": 201}},
            {"name": "get user", "url": "/users/{id}",
             "dependencies": [{"api": "create user", "variable": "id", "path": "response.id"}]},
        ],
    }))

    monkeypatch.setattr(settings, "workspace", str(tmp_path))
    monkeypatch.setattr(settings, "db_path", str(tmp_path / "data" / "apirunner.db"))
    monkeypatch.setattr(settings, "systems", {"default": SystemConfig(api_url="http://api.test")})
    monkeypatch.setattr(settings, "throttle_poll_interval", 0.01)
    return tmp_path


@pytest.fixture
def api(monkeypatch):
    """Serve the workspace endpoints from an in-process httpx transport."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(f"{request.method} {request.url.path}")
        if request.method == "POST":
            return httpx.Response(201, json={"id": 5})
        return httpx.Response(200, json={"id": 5})

    monkeypatch.setattr(
        "apirunner.core.context.HttpxTransport",
        lambda systems: HttpxTransport(systems, transport=httpx.MockTransport(handler))
    )
    return requests


def test_version():
    result = CliRunner().invoke(cli, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_list_as_json(workspace):
    result = CliRunner().invoke(cli, ["list", "--format", "json"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "users": {"crud [users/crud.json]": {"create user": {}, "get user": {}}}
    }


def test_list_dependencies(workspace):
    result = CliRunner().invoke(cli, ["list", "--dependencies", "--format", "json", "-a", "get user"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "1. users.crud.get user": {"1. users.crud.create user": {}}
    }


def test_list_as_tree(workspace):
    result = CliRunner().invoke(cli, ["list", "--search", "-a", "GET"])

    assert result.exit_code == 0
    assert "get user" in result.output
    assert "create user" not in result.output


def test_list_without_matches_exits_with_an_error(workspace):
    result = CliRunner().invoke(cli, ["list", "-c", "orders"])

    assert result.exit_code == 1
    assert "No endpoints found" in result.output


def test_freeze_and_unfreeze(workspace):
    runner = CliRunner()
    frozen = workspace / ".cache" / "scenarios.json"

    result = runner.invoke(cli, ["freeze"])
    assert result.exit_code == 0
    assert "Froze 1 scenario(s)" in result.output
    assert [scenario["name"] for scenario in json.loads(frozen.read_text())] == ["crud"]

    # Frozen scenarios are used until unfrozen
    (workspace / "tests" / "scenarios" / "users" / "crud.json").unlink()
    assert runner.invoke(cli, ["list", "--format", "json"]).exit_code == 0

    result = runner.invoke(cli, ["unfreeze"])
    assert result.exit_code == 0
    assert not frozen.exists()
    assert runner.invoke(cli, ["list"]).exit_code == 1

    result = runner.invoke(cli, ["unfreeze"])
    assert "No frozen scenarios found" in result.output


def test_run_passing_job(workspace, api):
    runner = CliRunner()

    result = runner.invoke(cli, ["run", "--variables", "env=qa"])

    assert result.exit_code == 0, result.output
    assert "PASSED" in result.output
    assert api.count("POST /users") == 2
    assert api.count("GET /users/5") == 1

    jobs = runner.invoke(cli, ["jobs", "--json"])
    assert jobs.exit_code == 0
    history = json.loads(jobs.output)
    assert len(history) == 1
    assert history[0]["status"] is True
    assert history[0]["endpoints_executed"] == 2


def test_run_with_selection_filters(workspace, api):
    result = CliRunner().invoke(cli, ["run", "-a", "get user", "-k", "endpoint.method=GET", "--variables", "id=9"])

    assert result.exit_code == 0, result.output
    assert api == ["POST /users", "GET /users/5"]


def test_run_with_a_failing_endpoint(workspace, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    monkeypatch.setattr(
        "apirunner.core.context.HttpxTransport",
        lambda systems: HttpxTransport(systems, transport=httpx.MockTransport(handler))
    )

    result = CliRunner().invoke(cli, ["run", "-a", "create user"])

    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_run_without_scenarios(workspace):
    result = CliRunner().invoke(cli, ["run", "-c", "orders"])

    assert result.exit_code == 1
    assert "No tests found" in result.output


def test_run_with_an_unknown_system(workspace, api):
    result = CliRunner().invoke(cli, ["run", "--systems", "default=production"])

    assert result.exit_code == 1
    assert "not configured" in result.output
    assert api == []


def test_jobs_table(workspace):
    result = CliRunner().invoke(cli, ["jobs"])

    assert result.exit_code == 0
    assert "Recent jobs" in result.output

"""Shared fixtures for driftscan tests."""

import json
import threading

import pytest

from driftscan.config.parser import Config
from driftscan.providers.base import Provider
from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration
from driftscan.utils.retry import RetryStrategy


class FakeProvider(Provider):
    """In-memory provider.

    ``resources`` maps resource id to observed attributes. ``errors`` maps
    resource id to an exception raised on every call, or to a list of
    exceptions raised on successive calls before succeeding.
    """

    name = "fake"

    def __init__(self, resources=None, errors=None, discovered=None, on_fetch=None):
        self.resources = resources or {}
        self.errors = errors or {}
        self.discovered = discovered or []
        self.on_fetch = on_fetch
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, declaration):
        with self._lock:
            self.calls.append(declaration.id)
            pending = self.errors.get(declaration.id)
            error = None
            if isinstance(pending, list):
                if pending:
                    error = pending.pop(0)
            elif pending is not None:
                error = pending
        if self.on_fetch:
            self.on_fetch(declaration)
        if error is not None:
            raise error
        attributes = self.resources.get(declaration.id)
        if attributes is None:
            return None
        return ObservedResource.from_declaration(declaration, attributes)

    def discover(self, environment):
        return list(self.discovered)

    def call_count(self, resource_id):
        return self.calls.count(resource_id)


def make_environment(resources, name="prod", last_applied=None):
    """Build an Environment from (id, attributes, dependencies) tuples."""
    declarations = [
        ResourceDeclaration(
            id=resource_id,
            type=resource_id.split("-")[0],
            name=resource_id,
            attributes=attributes,
            dependencies=dependencies,
        )
        for resource_id, attributes, dependencies in resources
    ]
    return Environment(name=name, declarations=declarations, last_applied=last_applied)


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


def declared_document(resources):
    """Native declaration document from (id, attributes, dependencies) tuples."""
    return {
        "resources": [
            {
                "id": resource_id,
                "type": resource_id.split("-")[0],
                "name": resource_id,
                "attributes": attributes,
                "depends_on": dependencies,
            }
            for resource_id, attributes, dependencies in resources
        ]
    }


@pytest.fixture
def fast_retry():
    """Three attempts without waiting between them."""
    return RetryStrategy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def network_resources():
    """vpc-1 with subnet-1 and db-1 depending on it."""
    return [
        ("subnet-1", {"cidr_block": "10.0.1.0/24"}, ["vpc-1"]),
        ("vpc-1", {"cidr_block": "10.0.0.0/16"}, []),
        ("db-1", {"engine": "postgres"}, ["subnet-1"]),
    ]


@pytest.fixture
def make_config(tmp_path):
    """Write declared files for environments and return a loaded Config."""

    def _make(environments, scanner=None):
        data = {"environments": {}, "scanner": {"lock_dir": "locks", **(scanner or {})}}
        for name, settings in environments.items():
            declared = write_json(tmp_path / f"{name}.json", declared_document(settings["resources"]))
            env = {"declared": declared.name, "provider": {"type": "static", "path": f"{name}-observed.json"}}
            if settings.get("state"):
                env["state"] = settings["state"]
            write_json(tmp_path / f"{name}-observed.json", {"resources": [
                {"id": rid, "type": rid.split("-")[0], "name": rid, "attributes": attrs}
                for rid, attrs in settings.get("observed", {}).items()
            ]})
            data["environments"][name] = env
        return Config.from_dict(data, base_dir=str(tmp_path))

    return _make

"""State store for declared resources and last applied snapshots."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from driftscan.config.models import EnvironmentConfig
from driftscan.state.models import Environment, ResourceDeclaration, Snapshot
from driftscan.utils.errors import (
    ConfigurationError,
    CorruptStateError,
    ErrorContext,
    NotFoundError,
)
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}


def read_document(path: Path) -> Any:
    """Read a JSON or YAML document.

    Raises:
        CorruptStateError: If the document cannot be parsed
    """
    try:
        with open(path, "r") as f:
            if path.suffix.lower() in YAML_SUFFIXES:
                return yaml.safe_load(f)
            return json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise CorruptStateError(f"Failed to parse {path}: {e}", cause=e)


def is_terraform_state(document: Dict[str, Any]) -> bool:
    """Check whether a document is a Terraform state file."""
    if "terraform_version" in document:
        return True
    resources = document.get("resources") or []
    return any(isinstance(r, dict) and "instances" in r for r in resources)


def parse_resource_entries(document: Any) -> List[Dict[str, Any]]:
    """Extract raw resource entries from a native or Terraform state document.

    Returns:
        Mappings with id, type, name, attributes and dependencies

    Raises:
        CorruptStateError: If the document layout is invalid
    """
    if not isinstance(document, dict):
        raise CorruptStateError("Resource document must be a mapping")

    resources = document.get("resources")
    if resources is None:
        resources = []
    if not isinstance(resources, list):
        raise CorruptStateError("'resources' must be a list")

    try:
        if is_terraform_state(document):
            return _parse_terraform_state(resources)
        return [dict(entry) for entry in resources]
    except (TypeError, KeyError, ValueError) as e:
        raise CorruptStateError(f"Invalid resource entry: {e}", cause=e)


def _parse_terraform_state(resources: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    entries = []
    # Terraform dependencies name the resource address, not the instance
    address_map: Dict[str, List[str]] = {}

    for position, resource in enumerate(resources):
        if not isinstance(resource, dict):
            raise CorruptStateError(f"Terraform resource #{position} must be a mapping")
        if resource.get("mode", "managed") != "managed":
            continue
        prefix = f"{resource['module']}." if resource.get("module") else ""
        address = f"{prefix}{resource['type']}.{resource['name']}"

        instances = resource.get("instances") or []
        if not isinstance(instances, list):
            raise CorruptStateError(f"Instances of {address} must be a list")
        for instance in instances:
            if not isinstance(instance, dict):
                raise CorruptStateError(f"Instance of {address} must be a mapping")
            index_key = instance.get("index_key")
            resource_id = address if index_key is None else f"{address}[{json.dumps(index_key)}]"
            address_map.setdefault(address, []).append(resource_id)
            entries.append({
                "id": resource_id,
                "type": resource["type"],
                "name": resource["name"],
                "attributes": instance.get("attributes") or {},
                "dependencies": list(instance.get("dependencies") or []),
            })

    for entry in entries:
        resolved: List[str] = []
        for address in entry["dependencies"]:
            # Data sources and other unmanaged addresses are dropped
            for target in address_map.get(address, []):
                if target not in resolved and target != entry["id"]:
                    resolved.append(target)
        entry["dependencies"] = resolved

    return entries


class StateStore:
    """Reads declared resource sets and snapshots for registered environments."""

    def __init__(self, environments: Dict[str, EnvironmentConfig]):
        """Initialize StateStore.

        Args:
            environments: Environment configurations keyed by name
        """
        self.environments = dict(environments)

    def is_registered(self, name: str) -> bool:
        """Check if an environment is registered."""
        return name in self.environments

    def read(self, name: str) -> Environment:
        """Load the declared resources and last applied snapshot of an environment.

        Args:
            name: Environment name

        Returns:
            Environment with declarations in declaration order

        Raises:
            NotFoundError: If the environment is unregistered or its declaration is missing
            CorruptStateError: If stored state cannot be parsed
        """
        env_config = self._get_config(name)
        declared_path = Path(env_config.declared)

        if not declared_path.exists():
            raise NotFoundError(
                f"Declared resources not found: {declared_path}",
                context=ErrorContext(environment=name, operation="read")
            )

        try:
            entries = parse_resource_entries(read_document(declared_path))
            declarations = [ResourceDeclaration(**entry) for entry in entries]
            environment = Environment(
                name=name,
                region=env_config.region,
                declarations=declarations,
                last_applied=self.read_snapshot(name),
            )
        except CorruptStateError as e:
            raise e.with_context(environment=name, operation="read")
        except (ValidationError, TypeError) as e:
            raise CorruptStateError(
                f"Invalid declared resources in {declared_path}: {e}",
                context=ErrorContext(environment=name, operation="read"),
                cause=e
            )

        logger.debug(
            f"Loaded {len(environment.declarations)} declared resources for {name}"
        )
        return environment

    def read_snapshot(self, name: str) -> Optional[Snapshot]:
        """Load the last applied snapshot, or None if none was recorded.

        Raises:
            NotFoundError: If the environment is unregistered
            CorruptStateError: If the snapshot cannot be parsed
        """
        env_config = self._get_config(name)
        if not env_config.state:
            return None

        path = Path(env_config.state)
        if not path.exists():
            return None

        document = read_document(path)
        try:
            return Snapshot(**document)
        except (ValidationError, TypeError) as e:
            raise CorruptStateError(
                f"Invalid snapshot in {path}: {e}",
                context=ErrorContext(environment=name, operation="read_snapshot"),
                cause=e
            )

    def write_snapshot(self, name: str, snapshot: Snapshot) -> Path:
        """Atomically record the last applied snapshot of an environment.

        Raises:
            NotFoundError: If the environment is unregistered
            ConfigurationError: If the environment has no snapshot location
        """
        env_config = self._get_config(name)
        if not env_config.state:
            raise ConfigurationError(
                f"Environment '{name}' has no 'state' location for snapshots",
                context=ErrorContext(environment=name, operation="write_snapshot")
            )

        path = Path(env_config.state)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temporary file first, then rename over the old snapshot
        temp_path = path.with_suffix(path.suffix + ".tmp")
        with open(temp_path, "w") as f:
            f.write(snapshot.model_dump_json(indent=2))
        temp_path.replace(path)

        logger.info(f"Recorded snapshot of {len(snapshot.resources)} resources for {name}")
        return path

    def _get_config(self, name: str) -> EnvironmentConfig:
        if name not in self.environments:
            raise NotFoundError(
                f"Environment '{name}' is not registered",
                context=ErrorContext(environment=name)
            )
        return self.environments[name]

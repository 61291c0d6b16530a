"""Provider that reads observed state from a file."""

import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from driftscan.providers.base import Provider
from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration
from driftscan.state.store import parse_resource_entries, read_document
from driftscan.utils.errors import CorruptStateError, ErrorContext, UnreachableError
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)


class StaticProvider(Provider):
    """Observed state exported to a JSON/YAML file or a refreshed Terraform state.

    The file is read once, on first use.
    """

    name = "static"

    def __init__(self, path: str):
        self.path = Path(path)
        self._resources: Optional[Dict[str, ObservedResource]] = None
        self._load_lock = threading.Lock()

    def fetch(self, declaration: ResourceDeclaration) -> Optional[ObservedResource]:
        return self._load().get(declaration.id)

    def discover(self, environment: Environment) -> List[ObservedResource]:
        return list(self._load().values())

    def _load(self) -> Dict[str, ObservedResource]:
        with self._load_lock:
            if self._resources is None:
                if not self.path.exists():
                    raise UnreachableError(
                        f"Observed state file not found: {self.path}",
                        context=ErrorContext(provider=self.name, operation="load")
                    )
                entries = parse_resource_entries(read_document(self.path))
                try:
                    resources = [
                        ObservedResource(**{k: v for k, v in entry.items() if k != "dependencies"})
                        for entry in entries
                    ]
                except ValidationError as e:
                    raise CorruptStateError(
                        f"Invalid observed resources in {self.path}: {e}",
                        context=ErrorContext(provider=self.name, operation="load"),
                        cause=e
                    )
                self._resources = {resource.id: resource for resource in resources}
                logger.debug(f"Loaded {len(self._resources)} observed resources from {self.path}")
            return self._resources

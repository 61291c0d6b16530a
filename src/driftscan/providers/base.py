"""Base provider interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration


class Provider(ABC):
    """Base class for backends that observe live infrastructure."""

    name = "base"

    @abstractmethod
    def fetch(self, declaration: ResourceDeclaration) -> Optional[ObservedResource]:
        """Fetch the current state of a declared resource.

        Args:
            declaration: The declared resource to look up

        Returns:
            Observed resource, or None if it does not exist

        Raises:
            UnreachableError: Provider temporarily unavailable (retried)
            PermissionDeniedError: Access refused (fatal)
            UnsupportedResourceError: Resource type cannot be observed
        """
        pass

    def discover(self, environment: Environment) -> List[ObservedResource]:
        """List resources that exist in the environment.

        Used to find unmanaged resources. Backends that cannot enumerate
        resources return an empty list.
        """
        return []

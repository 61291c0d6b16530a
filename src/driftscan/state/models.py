"""Declared and observed resource models."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ResourceDeclaration(BaseModel):
    """A resource as the environment declares it."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Resource identifier (defaults to type.name)")
    type: str = Field(..., min_length=1, description="Resource type (e.g., aws_vpc)")
    name: str = Field(..., min_length=1, description="Resource name")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Desired attribute values"
    )
    dependencies: List[str] = Field(
        default_factory=list, description="Identifiers of resources this one depends on"
    )

    @model_validator(mode="before")
    @classmethod
    def default_id(cls, data: Any) -> Any:
        """Derive the identifier and accept the depends_on spelling."""
        if isinstance(data, dict):
            data = dict(data)
            if "depends_on" in data and "dependencies" not in data:
                data["dependencies"] = data.pop("depends_on")
            if not data.get("id") and data.get("type") and data.get("name"):
                data["id"] = f"{data['type']}.{data['name']}"
        return data


class ObservedResource(BaseModel):
    """A resource as the provider currently reports it."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Resource identifier")
    type: str = Field(..., min_length=1, description="Resource type")
    name: str = Field(..., min_length=1, description="Resource name")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Actual attribute values")
    fetched_at: datetime = Field(default_factory=utcnow, description="When the resource was fetched")
    partial: bool = Field(
        False, description="Provider reports only a subset of attributes"
    )

    @model_validator(mode="before")
    @classmethod
    def default_id(cls, data: Any) -> Any:
        """Derive the identifier from type and name when missing."""
        if isinstance(data, dict) and not data.get("id") and data.get("type") and data.get("name"):
            data = {**data, "id": f"{data['type']}.{data['name']}"}
        return data

    @classmethod
    def from_declaration(
        cls,
        declaration: ResourceDeclaration,
        attributes: Dict[str, Any],
        partial: bool = False
    ) -> "ObservedResource":
        """Create the observed counterpart of a declaration."""
        return cls(
            id=declaration.id,
            type=declaration.type,
            name=declaration.name,
            attributes=attributes,
            partial=partial,
        )


class Snapshot(BaseModel):
    """Last successfully applied observed state of an environment."""

    environment: str = Field(..., description="Environment name")
    taken_at: datetime = Field(default_factory=utcnow, description="Snapshot time")
    resources: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Attributes keyed by resource identifier"
    )

    def get_attributes(self, resource_id: str) -> Optional[Dict[str, Any]]:
        """Get the recorded attributes of a resource."""
        return self.resources.get(resource_id)

    @classmethod
    def from_observed(
        cls, environment: str, observed: List[ObservedResource]
    ) -> "Snapshot":
        """Build a snapshot from freshly observed resources."""
        return cls(
            environment=environment,
            resources={resource.id: dict(resource.attributes) for resource in observed},
        )


class Environment(BaseModel):
    """An environment loaded for one scan."""

    name: str = Field(..., description="Environment name")
    region: str = Field("global", description="Region the environment lives in")
    declarations: List[ResourceDeclaration] = Field(
        default_factory=list, description="Declared resources in declaration order"
    )
    last_applied: Optional[Snapshot] = Field(None, description="Last applied snapshot")
    lock_token: Optional[str] = Field(None, description="Token of the plan holding the lock")

    @model_validator(mode="after")
    def validate_unique_ids(self):
        """Validate that resource identifiers are unique."""
        seen = set()
        for declaration in self.declarations:
            if declaration.id in seen:
                raise ValueError(f"Duplicate resource identifier: {declaration.id}")
            seen.add(declaration.id)
        return self

    def get_declaration(self, resource_id: str) -> Optional[ResourceDeclaration]:
        """Get a declaration by identifier."""
        for declaration in self.declarations:
            if declaration.id == resource_id:
                return declaration
        return None

    def resource_ids(self) -> List[str]:
        """Identifiers in declaration order."""
        return [declaration.id for declaration in self.declarations]

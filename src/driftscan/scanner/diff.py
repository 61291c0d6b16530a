"""Diff engine comparing declared and observed resources."""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, Field

from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration, Snapshot
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)


class DriftClassification(str, Enum):
    """How a resource diverges."""
    MISSING_IN_OBSERVED = "missing-in-observed"
    UNMANAGED = "unmanaged"
    CHANGED = "changed"


class FieldOrigin(str, Enum):
    """Which side moved away from the last applied snapshot."""
    EXTERNAL = "external"  # Live infrastructure changed
    DECLARED = "declared"  # Declaration changed since the last apply
    UNKNOWN = "unknown"  # No snapshot, or both sides changed


class FieldDiff(BaseModel):
    """Declared and observed value of one attribute."""

    declared: Any = None
    observed: Any = None
    origin: FieldOrigin = FieldOrigin.UNKNOWN


class DriftRecord(BaseModel):
    """Divergence of one resource."""

    resource_id: str
    resource_type: str
    classification: DriftClassification
    field_diffs: Dict[str, FieldDiff] = Field(
        default_factory=dict, description="Diffs keyed by attribute name, sorted"
    )


def values_equal(left: Any, right: Any) -> bool:
    """Exact, type-strict equality.

    ``True`` and ``1`` differ, as do ``1`` and ``1.0``. Containers are compared
    element by element with the same rule.
    """
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        if left.keys() != right.keys():
            return False
        return all(values_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


class DiffEngine:
    """Classifies drift between declared and observed state.

    By default only declared attributes are compared, so attributes the
    provider computes on its own are not reported. ``strict`` also compares
    attributes present only in the observed resource.
    """

    def __init__(self, ignore_fields: Optional[Iterable[str]] = None, strict: bool = False):
        """Initialize the diff engine.

        Args:
            ignore_fields: Attributes never compared. ``attr.key`` ignores one
                key of a mapping attribute (e.g., ``tags.deployed-at``).
            strict: Compare the union of declared and observed attributes
        """
        self.ignored_attributes: Set[str] = set()
        self.ignored_keys: Dict[str, Set[str]] = {}
        for entry in ignore_fields or []:
            attribute, _, key = entry.partition('.')
            if key:
                self.ignored_keys.setdefault(attribute, set()).add(key)
            else:
                self.ignored_attributes.add(attribute)
        self.strict = strict

    def compute(
        self,
        environment: Environment,
        observed: Dict[str, ObservedResource],
        unmanaged: Optional[List[ObservedResource]] = None,
        skipped: Optional[Iterable[str]] = None
    ) -> List[DriftRecord]:
        """Compute drift records for an environment.

        Args:
            environment: Environment with declarations and last applied snapshot
            observed: Observed resources keyed by identifier
            unmanaged: Observed resources nobody declared
            skipped: Identifiers that could not be observed and are not compared

        Returns:
            Declared resources in declaration order, then unmanaged resources
            sorted by identifier
        """
        skipped = set(skipped or [])
        snapshot = environment.last_applied
        records: List[DriftRecord] = []

        for declaration in environment.declarations:
            if declaration.id in skipped:
                continue
            record = self.compare(declaration, observed.get(declaration.id), snapshot)
            if record is not None:
                records.append(record)

        for resource in sorted(unmanaged or [], key=lambda r: r.id):
            records.append(self._unmanaged_record(resource, snapshot))

        logger.debug(f"Computed {len(records)} drift records for {environment.name}")
        return records

    def compare(
        self,
        declaration: ResourceDeclaration,
        observed: Optional[ObservedResource],
        snapshot: Optional[Snapshot] = None
    ) -> Optional[DriftRecord]:
        """Compare one declaration with its observed counterpart.

        Returns:
            DriftRecord, or None when they match
        """
        declared_attrs = self._filter(declaration.attributes)
        baseline = self._baseline(snapshot, declaration.id)

        if observed is None:
            field_diffs = {
                name: self._field_diff(name, declared_attrs[name], None, baseline)
                for name in sorted(declared_attrs)
                if declared_attrs[name] is not None
            }
            return DriftRecord(
                resource_id=declaration.id,
                resource_type=declaration.type,
                classification=DriftClassification.MISSING_IN_OBSERVED,
                field_diffs=field_diffs,
            )

        observed_attrs = self._filter(observed.attributes)
        names = set(declared_attrs)
        if self.strict:
            names |= set(observed_attrs)
        if observed.partial:
            names &= set(observed_attrs)

        field_diffs = {}
        for name in sorted(names):
            declared_value = declared_attrs.get(name)
            observed_value = observed_attrs.get(name)
            if not values_equal(declared_value, observed_value):
                field_diffs[name] = self._field_diff(name, declared_value, observed_value, baseline)

        if not field_diffs:
            return None
        return DriftRecord(
            resource_id=declaration.id,
            resource_type=declaration.type,
            classification=DriftClassification.CHANGED,
            field_diffs=field_diffs,
        )

    def _unmanaged_record(
        self, resource: ObservedResource, snapshot: Optional[Snapshot]
    ) -> DriftRecord:
        observed_attrs = self._filter(resource.attributes)
        baseline = self._baseline(snapshot, resource.id)
        return DriftRecord(
            resource_id=resource.id,
            resource_type=resource.type,
            classification=DriftClassification.UNMANAGED,
            field_diffs={
                name: self._field_diff(name, None, observed_attrs[name], baseline)
                for name in sorted(observed_attrs)
                if observed_attrs[name] is not None
            },
        )

    def _filter(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        filtered = {}
        for name, value in attributes.items():
            if name in self.ignored_attributes:
                continue
            keys = self.ignored_keys.get(name)
            if keys and isinstance(value, dict):
                value = {k: v for k, v in value.items() if k not in keys}
            filtered[name] = value
        return filtered

    @staticmethod
    def _baseline(snapshot: Optional[Snapshot], resource_id: str) -> Optional[Dict[str, Any]]:
        # A resource absent from an existing snapshot was not applied yet
        if snapshot is None:
            return None
        return snapshot.get_attributes(resource_id) or {}

    def _field_diff(
        self,
        name: str,
        declared: Any,
        observed: Any,
        baseline: Optional[Dict[str, Any]]
    ) -> FieldDiff:
        if baseline is None:
            origin = FieldOrigin.UNKNOWN
        else:
            applied = self._filter({name: baseline.get(name)}).get(name)
            if values_equal(applied, declared):
                origin = FieldOrigin.EXTERNAL
            elif values_equal(applied, observed):
                origin = FieldOrigin.DECLARED
            else:
                origin = FieldOrigin.UNKNOWN
        return FieldDiff(declared=declared, observed=observed, origin=origin)

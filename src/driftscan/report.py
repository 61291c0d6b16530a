"""Scan report model, serialization and console summary."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from rich.console import Console
from rich.table import Table

from driftscan.scanner.diff import DriftClassification, DriftRecord
from driftscan.state.models import utcnow
from driftscan.utils.errors import ScanError

EXIT_CLEAN = 0
EXIT_ERROR = 1
EXIT_DRIFT = 2


class EnvironmentStatus(str, Enum):
    """Outcome of scanning one environment."""
    CLEAN = "clean"
    DRIFTED = "drifted"
    ERROR = "error"


class ErrorInfo(BaseModel):
    """Serializable view of a scan error."""

    code: str
    message: str
    retryable: bool = False
    resource_id: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)

    @classmethod
    def from_error(cls, error: ScanError) -> "ErrorInfo":
        return cls(
            code=error.code,
            message=error.message,
            retryable=error.retryable,
            resource_id=error.context.resource_id,
            suggestions=list(error.suggestions),
        )


class PlanStepInfo(BaseModel):
    """Serializable view of a plan step."""

    resource_id: str
    action: str
    wave: int
    depends_on: List[str] = Field(default_factory=list)


class EnvironmentReport(BaseModel):
    """Scan result of one environment.

    A failed environment carries only the error: no drift and no plan.
    """

    environment: str
    region: Optional[str] = None
    status: EnvironmentStatus
    drift: List[DriftRecord] = Field(default_factory=list)
    plan: List[PlanStepInfo] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
    duration: float = 0.0

    @classmethod
    def failed(
        cls, environment: str, error: ScanError, duration: float = 0.0
    ) -> "EnvironmentReport":
        return cls(
            environment=environment,
            status=EnvironmentStatus.ERROR,
            error=ErrorInfo.from_error(error),
            duration=duration,
        )

    def count(self, classification: DriftClassification) -> int:
        return sum(1 for record in self.drift if record.classification == classification)


class ScanReport(BaseModel):
    """Results of a scan across environments, in the requested order."""

    generated_at: datetime = Field(default_factory=utcnow)
    environments: List[EnvironmentReport] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(env.status == EnvironmentStatus.ERROR for env in self.environments)

    @property
    def has_drift(self) -> bool:
        return any(env.status == EnvironmentStatus.DRIFTED for env in self.environments)

    def exit_code(self) -> int:
        """Process exit code: errors win over drift."""
        if self.has_errors:
            return EXIT_ERROR
        if self.has_drift:
            return EXIT_DRIFT
        return EXIT_CLEAN

    def get(self, environment: str) -> Optional[EnvironmentReport]:
        for env in self.environments:
            if env.environment == environment:
                return env
        return None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def render(self, format: str = "json") -> str:
        """Serialize as ``json`` or ``yaml``."""
        if format == "yaml":
            return self.to_yaml()
        if format == "json":
            return self.to_json()
        raise ValueError(f"Unsupported report format: {format}")


STATUS_STYLES = {
    EnvironmentStatus.CLEAN: "green",
    EnvironmentStatus.DRIFTED: "yellow",
    EnvironmentStatus.ERROR: "red",
}

ACTION_STYLES = {
    "create": "green",
    "update": "yellow",
    "delete": "red",
}


def _format_value(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    text = str(value)
    return text if len(text) <= 40 else text[:37] + "..."


def render_summary(report: ScanReport, console: Optional[Console] = None) -> None:
    """Print a human-readable summary of a scan report."""
    console = console or Console()

    table = Table(title="Drift Scan Summary", show_header=True, header_style="bold cyan")
    table.add_column("Environment", style="cyan")
    table.add_column("Status")
    table.add_column("Missing", justify="right")
    table.add_column("Changed", justify="right")
    table.add_column("Unmanaged", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Error")

    for env in report.environments:
        style = STATUS_STYLES[env.status]
        error = f"{env.error.code}: {env.error.message}" if env.error else ""
        table.add_row(
            env.environment,
            f"[{style}]{env.status.value}[/{style}]",
            str(env.count(DriftClassification.MISSING_IN_OBSERVED)),
            str(env.count(DriftClassification.CHANGED)),
            str(env.count(DriftClassification.UNMANAGED)),
            str(len(env.skipped)),
            error,
        )
    console.print(table)

    for env in report.environments:
        if env.status == EnvironmentStatus.DRIFTED:
            render_drift(env, console)


def render_drift(env: EnvironmentReport, console: Console) -> None:
    """Print the drift records of one environment in plan order."""
    records = {record.resource_id: record for record in env.drift}

    table = Table(
        title=f"Reconciliation plan: {env.environment}",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Wave", justify="right")
    table.add_column("Action")
    table.add_column("Resource", style="cyan")
    table.add_column("Field")
    table.add_column("Declared")
    table.add_column("Observed")
    table.add_column("Origin", style="dim")

    for position, step in enumerate(env.plan, 1):
        style = ACTION_STYLES.get(step.action, "white")
        record = records.get(step.resource_id)
        diffs = list(record.field_diffs.items()) if record else []
        first = True
        for name, diff in diffs or [("", None)]:
            table.add_row(
                str(position) if first else "",
                str(step.wave) if first else "",
                f"[{style}]{step.action}[/{style}]" if first else "",
                step.resource_id if first else "",
                name,
                _format_value(diff.declared) if diff else "",
                _format_value(diff.observed) if diff else "",
                diff.origin.value if diff else "",
            )
            first = False
    console.print(table)

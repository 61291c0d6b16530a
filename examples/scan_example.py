"""Example usage of the drift scanner as a library."""

import json
import tempfile
from pathlib import Path

from driftscan.config import Config
from driftscan.orchestrator import DependencyGraph, ScanOrchestrator
from driftscan.state.models import Snapshot
from driftscan.utils import error_handler, setup_logging

DECLARED = {
    "resources": [
        {"id": "subnet-app", "type": "aws_subnet", "name": "app",
         "attributes": {"cidr_block": "10.0.1.0/24"}, "depends_on": ["vpc-main"]},
        {"id": "vpc-main", "type": "aws_vpc", "name": "main",
         "attributes": {"cidr_block": "10.0.0.0/16", "tags": {"team": "platform"}}},
        {"id": "queue-jobs", "type": "aws_sqs_queue", "name": "jobs",
         "attributes": {"visibility_timeout_seconds": 30}},
    ]
}

OBSERVED = {
    "resources": [
        {"id": "vpc-main", "type": "aws_vpc", "name": "main",
         "attributes": {"cidr_block": "10.0.0.0/16", "tags": {"team": "data"}}},
        {"id": "subnet-app", "type": "aws_subnet", "name": "app",
         "attributes": {"cidr_block": "10.0.9.0/24"}},
        {"id": "bucket-stray", "type": "aws_s3_bucket", "name": "stray",
         "attributes": {"bucket": "stray"}},
    ]
}


def write_project(workdir: Path) -> Config:
    """Write declared and observed state files and build a configuration."""
    (workdir / "prod.json").write_text(json.dumps(DECLARED))
    (workdir / "prod-observed.json").write_text(json.dumps(OBSERVED))

    return Config.from_dict({
        "scanner": {"lock_dir": "locks", "ignore_fields": ["tags.deployed-at"]},
        "environments": {
            "prod": {
                "declared": "prod.json",
                "state": "snapshots/prod.json",
                "provider": {"type": "static", "path": "prod-observed.json"},
            },
        },
    }, base_dir=str(workdir))


def example_dependency_graph(config: Config):
    """Example: Inspecting deployment order."""
    print("=== Dependency Graph ===")

    orchestrator = ScanOrchestrator(config)
    environment = orchestrator.state_store.read("prod")
    graph = DependencyGraph.from_environment(environment)

    for number, wave in enumerate(graph.get_waves(), 1):
        print(f"  Wave {number}: {', '.join(wave)}")


def example_scan(config: Config):
    """Example: Report-only scan of every environment."""
    print("\n=== Scan ===")

    report = ScanOrchestrator(config).scan()
    for env in report.environments:
        print(f"  {env.environment}: {env.status.value}")
        for record in env.drift:
            print(f"    {record.classification.value:<20} {record.resource_id}")
            for name, diff in record.field_diffs.items():
                print(f"      {name}: {diff.declared!r} -> {diff.observed!r} ({diff.origin.value})")

    print(f"  Exit code: {report.exit_code()}")


def example_reconcile(config: Config):
    """Example: Holding a plan while reconciling, then recording a snapshot."""
    print("\n=== Reconciliation Plan ===")

    orchestrator = ScanOrchestrator(config)
    try:
        result = orchestrator.analyze("prod")
    except Exception as e:
        scan_error = error_handler.handle_exception(e)
        print(scan_error.to_user_message())
        return

    if result.plan is None:
        print("  No drift detected")
        return

    # Exiting the block completes the plan and releases the environment lock
    with result.plan as plan:
        for step in plan.steps:
            waits = f" (after {', '.join(step.depends_on)})" if step.depends_on else ""
            print(f"  wave {step.wave}: {step.action.value} {step.resource_id}{waits}")

        # Pretend reconciliation succeeded and record what is live now
        snapshot = Snapshot.from_observed("prod", list(result.fetch_result.observed.values()))
        plan.complete(snapshot)

    print(f"  Plan {plan.status.value}; snapshot written")


def main():
    """Run all examples."""
    setup_logging("warning")

    with tempfile.TemporaryDirectory() as tmp:
        config = write_project(Path(tmp))
        example_dependency_graph(config)
        example_scan(config)
        example_reconcile(config)


if __name__ == "__main__":
    main()

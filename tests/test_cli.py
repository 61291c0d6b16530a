"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from driftscan.cli.main import cli

from conftest import declared_document, write_json

NETWORK = [
    ("subnet-1", {"cidr_block": "10.0.1.0/24"}, ["vpc-1"]),
    ("vpc-1", {"cidr_block": "10.0.0.0/16"}, []),
]


def observed_document(observed):
    return {"resources": [
        {"id": rid, "type": rid.split("-")[0], "name": rid, "attributes": attrs}
        for rid, attrs in observed.items()
    ]}


@pytest.fixture
def project(tmp_path):
    """Write driftscan.yaml with a clean and a drifted environment."""
    write_json(tmp_path / "clean.json", declared_document(NETWORK))
    write_json(tmp_path / "clean-observed.json", observed_document({
        "vpc-1": {"cidr_block": "10.0.0.0/16"},
        "subnet-1": {"cidr_block": "10.0.1.0/24"},
    }))
    write_json(tmp_path / "drifted.json", declared_document(NETWORK))
    write_json(tmp_path / "drifted-observed.json", observed_document({
        "vpc-1": {"cidr_block": "10.9.0.0/16"},
        "subnet-1": {"cidr_block": "10.9.1.0/24"},
    }))
    (tmp_path / "driftscan.yaml").write_text(
        "scanner:\n"
        "  lock_dir: locks\n"
        "environments:\n"
        "  clean:\n"
        "    declared: clean.json\n"
        "    provider: {type: static, path: clean-observed.json}\n"
        "  drifted:\n"
        "    declared: drifted.json\n"
        "    provider: {type: static, path: drifted-observed.json}\n"
        "  broken:\n"
        "    declared: missing.json\n"
        "    provider: {type: static, path: clean-observed.json}\n"
    )
    return tmp_path


def run(project, *args):
    return CliRunner().invoke(cli, ["--config", str(project / "driftscan.yaml"), *args])


def test_scan_clean_exits_zero(project):
    result = run(project, "scan", "--env", "clean")

    assert result.exit_code == 0, result.output
    assert "clean" in result.output


def test_scan_drift_exits_two(project):
    result = run(project, "scan", "--env", "drifted", "--env", "clean")

    assert result.exit_code == 2, result.output
    assert "vpc-1" in result.output


def test_scan_error_wins(project):
    result = run(project, "scan", "--format", "json")

    assert result.exit_code == 1, result.output
    assert "\"code\": \"NotFound\"" in result.output
    assert "\"status\": \"drifted\"" in result.output


def test_scan_json_output(project):
    result = run(project, "scan", "--env", "drifted", "--format", "json")

    assert result.exit_code == 2
    report = json.loads(result.stdout)
    [env] = report["environments"]
    assert [step["resource_id"] for step in env["plan"]] == ["vpc-1", "subnet-1"]


def test_scan_writes_report_file(project):
    output = project / "report.yaml"

    result = run(project, "scan", "--env", "clean", "--format", "yaml", "--output", str(output))

    assert result.exit_code == 0
    assert "status: clean" in output.read_text()


def test_plan_prints_ordered_steps(project):
    result = run(project, "plan", "--env", "drifted")

    assert result.exit_code == 2, result.output
    assert result.output.index("vpc-1") < result.output.index("subnet-1")


def test_plan_clean_environment(project):
    result = run(project, "plan", "--env", "clean")

    assert result.exit_code == 0
    assert "No drift detected" in result.output


def test_plan_unknown_environment(project):
    result = run(project, "plan", "--env", "qa")

    assert result.exit_code == 1
    assert "NotFound" in result.output


def test_graph(project):
    result = run(project, "graph", "--env", "clean")

    assert result.exit_code == 0, result.output
    assert "Wave 1:" in result.output
    assert "Wave 2: subnet-1" in result.output


def test_envs(project):
    result = run(project, "envs")

    assert result.exit_code == 0
    for name in ("clean", "drifted", "broken"):
        assert name in result.output


def test_missing_config(tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "envs"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output

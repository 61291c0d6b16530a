"""Tests for the observed state fetcher."""

import threading

import pytest

from driftscan.scanner.fetcher import CancellationToken, ObservedStateFetcher
from driftscan.state.models import ObservedResource
from driftscan.utils.errors import (
    PermissionDeniedError,
    ScanCancelledError,
    ScanError,
    UnreachableError,
    UnsupportedResourceError,
)

from conftest import FakeProvider, make_environment


def test_fetch_all_collects_observed_resources(fast_retry, network_resources):
    provider = FakeProvider(resources={
        "vpc-1": {"cidr_block": "10.0.0.0/16"},
        "subnet-1": {"cidr_block": "10.0.1.0/24"},
    })
    fetcher = ObservedStateFetcher(provider, fast_retry, concurrency=2)

    result = fetcher.fetch_all(make_environment(network_resources))

    assert sorted(result.observed) == ["subnet-1", "vpc-1"]
    assert result.observed["vpc-1"].attributes == {"cidr_block": "10.0.0.0/16"}
    assert result.unmanaged == []
    assert result.skipped == []
    assert sorted(provider.calls) == ["db-1", "subnet-1", "vpc-1"]


def test_unreachable_is_retried_until_success(fast_retry, network_resources):
    provider = FakeProvider(
        resources={"vpc-1": {}, "subnet-1": {}, "db-1": {}},
        errors={"db-1": [UnreachableError("timeout"), UnreachableError("timeout")]},
    )
    fetcher = ObservedStateFetcher(provider, fast_retry)

    result = fetcher.fetch_all(make_environment(network_resources))

    assert "db-1" in result.observed
    assert provider.call_count("db-1") == 3


def test_unreachable_fails_after_three_attempts(fast_retry, network_resources):
    provider = FakeProvider(
        resources={"vpc-1": {}, "subnet-1": {}},
        errors={"db-1": UnreachableError("timeout")},
    )
    fetcher = ObservedStateFetcher(provider, fast_retry)

    with pytest.raises(UnreachableError) as exc_info:
        fetcher.fetch_all(make_environment(network_resources))

    assert provider.call_count("db-1") == 3
    assert exc_info.value.context.resource_id == "db-1"
    assert exc_info.value.context.environment == "prod"


def test_permission_denied_is_fatal_and_not_retried(fast_retry, network_resources):
    provider = FakeProvider(
        resources={"vpc-1": {}, "subnet-1": {}},
        errors={"db-1": PermissionDeniedError("AccessDenied")},
    )
    fetcher = ObservedStateFetcher(provider, fast_retry)

    with pytest.raises(PermissionDeniedError):
        fetcher.fetch_all(make_environment(network_resources))

    assert provider.call_count("db-1") == 1


def test_permission_denied_stops_pending_fetches(fast_retry):
    resources = [(f"r-{i}", {}, []) for i in range(5)]
    provider = FakeProvider(
        resources={f"r-{i}": {} for i in range(5)},
        errors={"r-0": PermissionDeniedError("AccessDenied")},
    )
    fetcher = ObservedStateFetcher(provider, fast_retry, concurrency=1)

    with pytest.raises(PermissionDeniedError):
        fetcher.fetch_all(make_environment(resources))

    assert provider.calls == ["r-0"]


def test_first_failure_in_declaration_order_is_raised(fast_retry):
    resources = [("a-1", {}, []), ("b-1", {}, []), ("c-1", {}, [])]
    provider = FakeProvider(errors={
        "c-1": ScanError("c failed"),
        "b-1": ScanError("b failed"),
    })
    fetcher = ObservedStateFetcher(provider, fast_retry, concurrency=3)

    with pytest.raises(ScanError) as exc_info:
        fetcher.fetch_all(make_environment(resources))

    assert exc_info.value.message == "b failed"


def test_unexpected_exceptions_are_translated(fast_retry):
    provider = FakeProvider(errors={"a-1": ConnectionError("reset")})
    fetcher = ObservedStateFetcher(provider, fast_retry)

    with pytest.raises(UnreachableError):
        fetcher.fetch_all(make_environment([("a-1", {}, [])]))
    assert provider.call_count("a-1") == 3


def test_unsupported_resources_are_skipped(fast_retry, network_resources):
    provider = FakeProvider(
        resources={"vpc-1": {}, "subnet-1": {}},
        errors={"db-1": UnsupportedResourceError("no db support")},
    )
    fetcher = ObservedStateFetcher(provider, fast_retry)

    result = fetcher.fetch_all(make_environment(network_resources))

    assert result.skipped == ["db-1"]
    assert "db-1" not in result.observed


def test_discovered_resources_exclude_declared(fast_retry):
    declared = ObservedResource(id="vpc-1", type="vpc", name="vpc-1")
    stray = ObservedResource(id="bucket-9", type="bucket", name="bucket-9")
    provider = FakeProvider(resources={"vpc-1": {}}, discovered=[declared, stray])
    fetcher = ObservedStateFetcher(provider, fast_retry)

    result = fetcher.fetch_all(make_environment([("vpc-1", {}, [])]))

    assert [resource.id for resource in result.unmanaged] == ["bucket-9"]


def test_discovery_can_be_disabled(fast_retry):
    stray = ObservedResource(id="bucket-9", type="bucket", name="bucket-9")
    provider = FakeProvider(resources={"vpc-1": {}}, discovered=[stray])
    fetcher = ObservedStateFetcher(provider, fast_retry, discover=False)

    assert fetcher.fetch_all(make_environment([("vpc-1", {}, [])])).unmanaged == []


def test_cancelled_before_start_fetches_nothing(fast_retry, network_resources):
    provider = FakeProvider()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ScanCancelledError):
        ObservedStateFetcher(provider, fast_retry).fetch_all(
            make_environment(network_resources), token
        )
    assert provider.calls == []


def test_cancellation_between_fetches(fast_retry):
    token = CancellationToken()
    resources = [(f"r-{i}", {}, []) for i in range(4)]
    provider = FakeProvider(
        resources={f"r-{i}": {} for i in range(4)},
        on_fetch=lambda declaration: token.cancel(),
    )
    fetcher = ObservedStateFetcher(provider, fast_retry, concurrency=1)

    with pytest.raises(ScanCancelledError):
        fetcher.fetch_all(make_environment(resources), token)
    assert provider.calls == ["r-0"]


def test_token_sleep_wakes_on_cancel():
    token = CancellationToken(poll_interval=0.01)
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        with pytest.raises(ScanCancelledError):
            token.sleep(10)
    finally:
        timer.cancel()


def test_child_token_follows_parent():
    parent = CancellationToken()
    child = parent.child()
    child.cancel()
    assert not parent.cancelled

    other = parent.child()
    parent.cancel()
    assert other.cancelled

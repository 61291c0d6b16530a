"""Observed state fetcher with bounded concurrency and cooperative cancellation."""

import copy
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from driftscan.providers.base import Provider
from driftscan.state.models import Environment, ObservedResource, ResourceDeclaration
from driftscan.utils.errors import (
    PermissionDeniedError,
    ScanCancelledError,
    ScanError,
    UnsupportedResourceError,
    error_handler,
    ErrorContext,
)
from driftscan.utils.logging import LogContext, get_logger
from driftscan.utils.retry import RetryStrategy

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared between scan workers.

    A child token is cancelled when its parent is, but cancelling a child
    leaves the parent untouched.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None, poll_interval: float = 0.1):
        self._event = threading.Event()
        self._parent = parent
        self.poll_interval = poll_interval

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether this token or any parent has been cancelled."""
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        """Create a token that also observes this one."""
        return CancellationToken(parent=self, poll_interval=self.poll_interval)

    def check(self) -> None:
        """Raise ScanCancelledError if cancellation was requested."""
        if self.cancelled:
            raise ScanCancelledError()

    def sleep(self, delay: float) -> None:
        """Wait for delay seconds, waking early to raise on cancellation."""
        deadline = time.monotonic() + delay
        while True:
            self.check()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._event.wait(min(remaining, self.poll_interval))


@dataclass
class FetchResult:
    """Observed state of one environment, collected after every fetch finished."""

    observed: Dict[str, ObservedResource] = field(default_factory=dict)
    unmanaged: List[ObservedResource] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class ObservedStateFetcher:
    """Fetches observed resources through a provider."""

    def __init__(
        self,
        provider: Provider,
        retry_strategy: Optional[RetryStrategy] = None,
        concurrency: int = 8,
        discover: bool = True
    ):
        """Initialize the fetcher.

        Args:
            provider: Backend used to observe resources
            retry_strategy: Backoff for unreachable providers (3 attempts by default)
            concurrency: Maximum concurrent provider calls
            discover: Whether to ask the provider for unmanaged resources
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.provider = provider
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.concurrency = concurrency
        self.discover = discover

    def fetch(
        self,
        declaration: ResourceDeclaration,
        cancel_token: Optional[CancellationToken] = None
    ) -> Optional[ObservedResource]:
        """Fetch one resource, retrying while the provider is unreachable.

        Args:
            declaration: Declared resource to look up
            cancel_token: Token checked before each attempt and during backoff

        Returns:
            Observed resource, or None if it does not exist

        Raises:
            UnreachableError: Provider still unreachable after the last attempt
            PermissionDeniedError: Access refused; never retried
            ScanCancelledError: Cancellation was requested
        """
        strategy = self._strategy_for(cancel_token)

        def attempt() -> Optional[ObservedResource]:
            if cancel_token is not None:
                cancel_token.check()
            try:
                return self.provider.fetch(declaration)
            except ScanError:
                raise
            except Exception as e:
                raise error_handler.handle_exception(
                    e, ErrorContext(resource_id=declaration.id, resource_type=declaration.type)
                )

        start = time.monotonic()
        observed = strategy.execute_with_retry(attempt)
        with LogContext(duration=round(time.monotonic() - start, 3)):
            logger.debug(
                f"Fetched {declaration.id}: {'found' if observed is not None else 'absent'}"
            )
        return observed

    def fetch_all(
        self,
        environment: Environment,
        cancel_token: Optional[CancellationToken] = None
    ) -> FetchResult:
        """Fetch every declared resource of an environment concurrently.

        All fetches finish before this returns. If any fetch failed, the first
        failure in declaration order is raised and nothing is returned. A
        permission failure stops fetches that have not started yet.

        Args:
            environment: Environment whose declarations to fetch
            cancel_token: Token for cooperative cancellation

        Returns:
            FetchResult with observed, unmanaged and skipped resources

        Raises:
            ScanError: The first fetch failure in declaration order
            ScanCancelledError: Cancellation was requested
        """
        cancel_token = cancel_token or CancellationToken()
        abort = cancel_token.child()
        declarations = environment.declarations
        results: List[Optional[ObservedResource]] = [None] * len(declarations)
        failures: List[Optional[Exception]] = [None] * len(declarations)
        skipped: List[str] = []
        skipped_lock = threading.Lock()

        def worker(index: int, declaration: ResourceDeclaration) -> None:
            with LogContext(
                environment=environment.name,
                resource_id=declaration.id,
                operation="fetch"
            ):
                try:
                    results[index] = self.fetch(declaration, abort)
                except UnsupportedResourceError as e:
                    logger.warning(f"Skipping {declaration.id}: {e.message}")
                    with skipped_lock:
                        skipped.append(declaration.id)
                except PermissionDeniedError as e:
                    failures[index] = e
                    abort.cancel()
                except Exception as e:
                    failures[index] = e

        logger.info(
            f"Fetching {len(declarations)} resources for {environment.name} "
            f"(concurrency={self.concurrency})"
        )
        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix=f"fetch-{environment.name}"
        ) as executor:
            futures = [
                executor.submit(worker, index, declaration)
                for index, declaration in enumerate(declarations)
            ]
            # Barrier: every fetch completes before anything is inspected
            for future in futures:
                future.result()

        cancel_token.check()
        for index, failure in enumerate(failures):
            # Fetches stopped by another resource's failure are not the cause
            if failure is None or isinstance(failure, ScanCancelledError):
                continue
            if isinstance(failure, ScanError):
                failure.with_context(
                    environment=environment.name, resource_id=declarations[index].id
                )
            raise failure

        unmanaged = self._discover(environment, cancel_token) if self.discover else []

        observed = {
            declaration.id: resource
            for declaration, resource in zip(declarations, results)
            if resource is not None
        }
        skipped_set = set(skipped)
        skipped_ids = [d.id for d in declarations if d.id in skipped_set]
        logger.info(
            f"Fetched {environment.name}: {len(observed)} observed, "
            f"{len(unmanaged)} unmanaged, {len(skipped_ids)} skipped"
        )
        return FetchResult(observed=observed, unmanaged=unmanaged, skipped=skipped_ids)

    def _discover(
        self, environment: Environment, cancel_token: CancellationToken
    ) -> List[ObservedResource]:
        declared = set(environment.resource_ids())
        strategy = self._strategy_for(cancel_token)

        def attempt() -> List[ObservedResource]:
            cancel_token.check()
            return self.provider.discover(environment)

        with LogContext(environment=environment.name, operation="discover"):
            try:
                discovered = strategy.execute_with_retry(attempt)
            except ScanError as e:
                raise e.with_context(environment=environment.name)

        return [resource for resource in discovered if resource.id not in declared]

    def _strategy_for(self, cancel_token: Optional[CancellationToken]) -> RetryStrategy:
        if cancel_token is None:
            return self.retry_strategy
        strategy = copy.copy(self.retry_strategy)
        strategy.sleep = cancel_token.sleep
        return strategy

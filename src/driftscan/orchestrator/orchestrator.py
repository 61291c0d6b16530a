"""Scan orchestration across environments."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from driftscan.config.models import EnvironmentConfig
from driftscan.config.parser import Config
from driftscan.orchestrator.dependency_graph import DependencyGraph
from driftscan.orchestrator.planner import ReconciliationPlan, ReconciliationPlanner
from driftscan.providers import Provider, create_provider
from driftscan.report import EnvironmentReport, EnvironmentStatus, PlanStepInfo, ScanReport
from driftscan.scanner.diff import DiffEngine, DriftRecord
from driftscan.scanner.fetcher import CancellationToken, FetchResult, ObservedStateFetcher
from driftscan.state.lock import LockManager
from driftscan.state.models import Environment, Snapshot
from driftscan.state.store import StateStore
from driftscan.utils.errors import EnvironmentLockedError, ErrorContext, error_handler
from driftscan.utils.logging import LogContext, get_logger
from driftscan.utils.retry import RetryStrategy

logger = get_logger(__name__)

ProviderFactory = Callable[[EnvironmentConfig], Provider]


def _plan_steps(plan: Optional[ReconciliationPlan]) -> List[PlanStepInfo]:
    if plan is None:
        return []
    return [
        PlanStepInfo(
            resource_id=step.resource_id,
            action=step.action.value,
            wave=step.wave,
            depends_on=list(step.depends_on),
        )
        for step in plan.steps
    ]


@dataclass
class EnvironmentScan:
    """Everything computed for one environment.

    ``plan`` is None when nothing drifted; otherwise it holds the environment
    lock until the caller completes, fails or releases it.
    """

    environment: Environment
    fetch_result: FetchResult
    graph: DependencyGraph
    drift_records: List[DriftRecord]
    plan: Optional[ReconciliationPlan] = None


class ScanOrchestrator:
    """Scans environments in parallel and plans reconciliation."""

    def __init__(
        self,
        config: Config,
        state_store: Optional[StateStore] = None,
        lock_manager: Optional[LockManager] = None,
        provider_factory: ProviderFactory = create_provider,
        retry_strategy: Optional[RetryStrategy] = None
    ):
        """Initialize the orchestrator.

        Args:
            config: Loaded configuration
            state_store: Declared state reader (built from config when None)
            lock_manager: Environment locks (built from config when None)
            provider_factory: Creates a provider for an environment
            retry_strategy: Backoff for provider calls (built from config when None)
        """
        self.config = config
        scanner = config.scanner
        self.state_store = state_store or StateStore(config.environments)
        self.lock_manager = lock_manager or LockManager(config.resolve_path(scanner.lock_dir))
        self.provider_factory = provider_factory
        self.retry_strategy = retry_strategy or RetryStrategy(
            max_attempts=scanner.retry.max_attempts,
            base_delay=scanner.retry.base_delay,
            max_delay=scanner.retry.max_delay,
            jitter=scanner.retry.jitter,
        )
        self.diff_engine = DiffEngine(ignore_fields=scanner.ignore_fields, strict=scanner.strict)
        self.planner = ReconciliationPlanner(self.lock_manager, self.state_store)
        # Tokens of in-flight scans; one entry per active call
        self._active_tokens: List[CancellationToken] = []
        self._tokens_lock = threading.Lock()

    def cancel(self) -> None:
        """Cancel in-flight scans. They stop before their next provider call.

        Scans started afterwards are not affected.
        """
        logger.warning("Cancellation requested")
        with self._tokens_lock:
            tokens = list(self._active_tokens)
        for token in tokens:
            token.cancel()

    @contextmanager
    def _track(self, cancel_token: Optional[CancellationToken] = None) -> Iterator[CancellationToken]:
        token = cancel_token or CancellationToken()
        with self._tokens_lock:
            self._active_tokens.append(token)
        try:
            yield token
        finally:
            with self._tokens_lock:
                self._active_tokens.remove(token)

    def analyze(self, name: str, cancel_token: Optional[CancellationToken] = None) -> EnvironmentScan:
        """Read, fetch, diff and plan one environment.

        The returned plan, if any, holds the environment lock.

        Raises:
            ScanError: Any failure; nothing partial is returned
        """
        with self._track(cancel_token) as token:
            return self._analyze(name, token)

    def _analyze(self, name: str, cancel_token: CancellationToken) -> EnvironmentScan:
        environment = self.state_store.read(name)
        graph = DependencyGraph.from_environment(environment)

        env_config = self.config.get_environment(name)
        fetcher = ObservedStateFetcher(
            provider=self.provider_factory(env_config),
            retry_strategy=self.retry_strategy,
            concurrency=self.config.scanner.fetch_concurrency,
            discover=env_config.provider.discover,
        )
        fetch_result = fetcher.fetch_all(environment, cancel_token)

        drift_records = self.diff_engine.compute(
            environment,
            fetch_result.observed,
            fetch_result.unmanaged,
            fetch_result.skipped,
        )

        cancel_token.check()
        plan = None
        if drift_records:
            plan = self.planner.create_plan(environment, drift_records, graph)

        return EnvironmentScan(
            environment=environment,
            fetch_result=fetch_result,
            graph=graph,
            drift_records=drift_records,
            plan=plan,
        )

    def scan_environment(
        self, name: str, cancel_token: Optional[CancellationToken] = None
    ) -> EnvironmentReport:
        """Scan one environment for a report. Errors are captured in the report."""
        start = time.monotonic()
        with LogContext(environment=name, operation="scan"):
            try:
                result = self.analyze(name, cancel_token)
                # Report-only: the lock is not held past plan construction
                if result.plan is not None:
                    result.plan.release()
                elif self.config.scanner.record_snapshots:
                    self._record_snapshot(result)
            except Exception as e:
                error = error_handler.handle_exception(e, ErrorContext(environment=name))
                error.with_context(environment=name)
                error_handler.log_error(error)
                return EnvironmentReport.failed(name, error, round(time.monotonic() - start, 3))

            duration = round(time.monotonic() - start, 3)
            status = EnvironmentStatus.DRIFTED if result.drift_records else EnvironmentStatus.CLEAN
            logger.info(f"Scanned {name}: {status.value} ({len(result.drift_records)} drifted) in {duration}s")
            return EnvironmentReport(
                environment=name,
                region=result.environment.region,
                status=status,
                drift=result.drift_records,
                plan=_plan_steps(result.plan),
                skipped=result.fetch_result.skipped,
                duration=duration,
            )

    def scan(self, names: Optional[List[str]] = None) -> ScanReport:
        """Scan environments in parallel.

        Args:
            names: Environments to scan (all configured when None)

        Returns:
            ScanReport with one entry per environment, in the given order
        """
        names = list(names) if names else self.config.list_environments()
        workers = min(self.config.scanner.max_workers, max(len(names), 1))
        logger.info(f"Scanning {len(names)} environments (max_workers={workers})")

        with self._track() as token:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scan") as executor:
                futures = [
                    executor.submit(self.scan_environment, name, token)
                    for name in names
                ]
                try:
                    reports = [future.result() for future in futures]
                except KeyboardInterrupt:
                    # Let workers stop at their next check before the pool shuts down
                    token.cancel()
                    raise

        return ScanReport(environments=reports)

    def _record_snapshot(self, result: EnvironmentScan) -> None:
        if self.config.get_environment(result.environment.name).state is None:
            logger.debug(f"No snapshot location for {result.environment.name}")
            return
        snapshot = Snapshot.from_observed(
            result.environment.name, list(result.fetch_result.observed.values())
        )
        try:
            lock = self.lock_manager.acquire(result.environment.name)
        except EnvironmentLockedError as e:
            # Held by an outstanding plan
            logger.warning(f"Not recording snapshot for {result.environment.name}: {e.message}")
            return
        with lock:
            self.state_store.write_snapshot(result.environment.name, snapshot)
        logger.info(f"Recorded snapshot for {result.environment.name}")


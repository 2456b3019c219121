"""
Controller module for Kelpie-DNS.

This module is responsible for coordinating between the sources, registry, and provider
components to ensure that the desired state is maintained.
"""

import asyncio
import enum
import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple, Union

from kelpie_dns.controller.conflict import ConflictResolver
from kelpie_dns.controller.plan import Plan, get_policy
from kelpie_dns.exceptions import KelpieDNSError, ReconcileError
from kelpie_dns.models.domain_filter import DomainFilter
from kelpie_dns.models.models import Changes, Endpoint
from kelpie_dns.utils.duration import parse_duration


class ControllerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"


class Controller:
    """
    Controller that coordinates between the sources, registry, and provider components.
    """

    def __init__(
        self,
        sources: Dict[str, object],
        registry,
        policy: str = "sync",
        domain_filter: Optional[DomainFilter] = None,
        managed_types: Optional[Iterable[str]] = None,
        interval: Union[str, float] = "1m",
        min_event_sync_interval: Union[str, float] = "5s",
        once: bool = False,
        dry_run: bool = False,
        cycle_timeout: Union[str, float, None] = None,
        fail_on_source_error: bool = False,
        resolver: Optional[ConflictResolver] = None,
    ):
        """
        Initialize a Controller.

        Args:
            sources: Sources by name
            registry: Registry wrapping the provider
            policy: Synchronization policy (sync, upsert-only, create-only)
            domain_filter: Names outside this filter are never touched
            managed_types: Record types to manage
            interval: Time between periodic reconciliations
            min_event_sync_interval: Minimum time between a cycle start and an event-triggered cycle
            once: Run a single reconciliation and stop
            dry_run: Log changes instead of applying them
            cycle_timeout: Maximum duration of one reconciliation (None for no limit)
            fail_on_source_error: Abort the cycle when any source fails
            resolver: Conflict resolver for colliding desired endpoints
        """
        self.sources = dict(sources)
        self.registry = registry
        self.policy = get_policy(policy)
        self.domain_filter = domain_filter or DomainFilter()
        self.managed_types = list(managed_types) if managed_types is not None else None
        self.interval = parse_duration(interval, default=60)
        self.min_event_sync_interval = parse_duration(min_event_sync_interval, default=5)
        self.once = once
        self.dry_run = dry_run
        self.cycle_timeout = parse_duration(cycle_timeout) if cycle_timeout else None
        self.fail_on_source_error = fail_on_source_error
        self.resolver = resolver or ConflictResolver()
        self.logger = logging.getLogger("kelpie-dns.controller")

        self.state = ControllerState.IDLE
        self.last_sync: Optional[float] = None
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0

        self._pending = False
        self._wakeup = asyncio.Event()
        self._last_run_start = float("-inf")
        self._next_run = 0.0
        self._cycle_task: Optional[asyncio.Task] = None

    def register_event_handlers(self) -> None:
        for name, source in self.sources.items():
            self.logger.debug(f"Registering change handler with source '{name}'")
            source.add_event_handler(self.schedule_run_on_change)

    def schedule_run_on_change(self) -> None:
        """
        Remembers that a source changed. At most one extra run is ever pending,
        however many notifications arrive.
        """
        if not self._pending:
            self.logger.debug("Source change notification received, scheduling reconciliation")
        self._pending = True
        self._wakeup.set()

    def _next_deadline(self) -> float:
        deadline = self._next_run
        if self._pending:
            deadline = min(deadline, self._last_run_start + self.min_event_sync_interval)
        return deadline

    async def run(self) -> None:
        """
        Runs reconciliations at the configured interval and after source changes,
        one at a time, until stop() is called. In once mode runs a single
        reconciliation whose errors propagate.
        """
        if self.once:
            try:
                await self.run_once()
            finally:
                self.state = ControllerState.SHUTTING_DOWN
            return

        self.register_event_handlers()
        self.logger.debug(
            f"Reconciliation loop starting with interval {self.interval}s, "
            f"min event sync interval {self.min_event_sync_interval}s"
        )
        while self.state is not ControllerState.SHUTTING_DOWN:
            self._wakeup.clear()
            delay = self._next_deadline() - time.monotonic()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                continue

            await self._run_cycle()
            self._next_run = self._last_run_start + self.interval

    async def _run_cycle(self) -> None:
        self._cycle_task = asyncio.ensure_future(self.run_once())
        try:
            await self._cycle_task
        except ReconcileError:
            # Already logged; the next cycle re-converges
            pass
        except asyncio.CancelledError:
            if self.state is not ControllerState.SHUTTING_DOWN:
                raise
            self.logger.info("Reconciliation cancelled by shutdown")
        finally:
            self._cycle_task = None

    def stop(self) -> None:
        """
        Stops the loop and cancels a reconciliation in flight.
        """
        self.logger.info("Stopping controller")
        self.state = ControllerState.SHUTTING_DOWN
        self._wakeup.set()
        if self._cycle_task and not self._cycle_task.done():
            self._cycle_task.cancel()

    async def run_once(self) -> Changes:
        """
        Performs a single reconciliation run.

        Returns:
            Changes: The changes that were applied, or would have been in dry-run mode

        Raises:
            ReconcileError: If the reconciliation failed
        """
        if self.state is ControllerState.SHUTTING_DOWN:
            raise ReconcileError("Controller is shutting down")

        self.state = ControllerState.RUNNING
        self._last_run_start = time.monotonic()
        # Notifications arriving from now on need another run
        self._pending = False
        try:
            if self.cycle_timeout:
                changes = await asyncio.wait_for(self._reconcile(), timeout=self.cycle_timeout)
            else:
                changes = await self._reconcile()
        except asyncio.TimeoutError:
            self._record_failure(f"Reconciliation timed out after {self.cycle_timeout}s")
            raise ReconcileError(self.last_error) from None
        except ReconcileError as e:
            self._record_failure(str(e))
            raise
        except KelpieDNSError as e:
            self._record_failure(f"Error in reconciliation: {e}")
            raise ReconcileError(self.last_error) from e
        except Exception as e:
            self._record_failure(f"Unexpected error in reconciliation: {e}")
            self.logger.debug("Reconciliation traceback", exc_info=True)
            raise ReconcileError(self.last_error) from e
        finally:
            if self.state is ControllerState.RUNNING:
                self.state = ControllerState.IDLE

        self.last_sync = time.time()
        self.last_error = None
        self.consecutive_failures = 0
        return changes

    def _record_failure(self, message: str) -> None:
        self.last_error = message
        self.consecutive_failures += 1
        self.logger.error(message)

    async def _reconcile(self) -> Changes:
        desired_endpoints, failed_sources = await self._desired_endpoints()
        desired_endpoints = await self.registry.adjust_endpoints(desired_endpoints)
        current_endpoints = await self.registry.records()

        plan = Plan(
            current_endpoints,
            desired_endpoints,
            policy=self.policy,
            domain_filter=self.domain_filter,
            managed_types=self.managed_types,
            owner_id=self.registry.owner_id,
            resolver=self.resolver,
            ordered_provider_specific=self.registry.provider_specific_ordered,
        )
        changes = plan.calculate_changes()

        if failed_sources and changes.delete:
            self.logger.warning(
                f"Sources {failed_sources} failed, withholding {len(changes.delete)} deletes "
                f"until they recover: {[ep.id for ep in changes.delete]}"
            )
            changes.delete = []

        log_level = logging.INFO if changes.has_changes() else logging.DEBUG
        self.logger.log(
            log_level,
            f"Running reconciliation: Found {len(desired_endpoints)} desired and "
            f"{len(current_endpoints)} current endpoints.",
        )

        if not changes.has_changes():
            self.logger.debug("All records are up to date")
            return changes

        if self.dry_run:
            self._log_dry_run(changes)
            return changes

        self.logger.info(f"Applying changes: {changes.summary()}")
        await self.registry.apply_changes(changes)
        return changes

    async def _desired_endpoints(self) -> Tuple[List[Endpoint], List[str]]:
        names = list(self.sources)
        results = await asyncio.gather(
            *(self.sources[name].endpoints() for name in names), return_exceptions=True
        )

        endpoints: List[Endpoint] = []
        failed = []
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                if self.fail_on_source_error:
                    raise ReconcileError(f"Source '{name}' failed: {result}") from result
                self.logger.error(f"Source '{name}' failed, skipping its endpoints: {result}")
                failed.append(name)
                continue
            self.logger.debug(f"Source '{name}' returned {len(result)} endpoints")
            endpoints.extend(result)
        return endpoints, failed

    def _log_dry_run(self, changes: Changes) -> None:
        self.logger.info(f"Dry run, not applying changes: {changes.summary()}")
        for endpoint in changes.create:
            self.logger.info(f"[dry-run] CREATE {endpoint}")
        for old_endpoint, new_endpoint in changes.updates():
            self.logger.info(f"[dry-run] UPDATE {old_endpoint} => {new_endpoint}")
        for endpoint in changes.delete:
            self.logger.info(f"[dry-run] DELETE {endpoint}")

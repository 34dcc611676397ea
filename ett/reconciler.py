from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Event, Thread
from typing import Callable

from .ecs_ops import ClusterInventory
from .errors import InventoryError, NoRoutableBindings, NotFound, TrackerError
from .runtime import RequestContext
from .store import RoutingStore

log = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of a best-effort pass over every service in the cluster."""

    services: list[str] = field(default_factory=list)
    out_of_sync: list[str] = field(default_factory=list)
    synced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # no routable bindings
    failures: dict[str, TrackerError] = field(default_factory=dict)

    @property
    def error(self) -> TrackerError | None:
        """First failure recorded during the sweep."""
        return next(iter(self.failures.values()), None)

    @property
    def ok(self) -> bool:
        return not self.failures


class Reconciler:
    """Compares and converges stored endpoint sets with what ECS reports."""

    def __init__(
        self,
        inventory: ClusterInventory,
        store: RoutingStore,
        sync_interval_s: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inventory = inventory
        self.store = store
        self.sync_interval_s = max(0, int(sync_interval_s))
        self._sleep = sleep
        self._stop = Event()
        self._thr: Thread | None = None

    # -- single service -------------------------------------------------

    def diff_one(self, service: str, ctx: RequestContext) -> bool:
        """True iff the stored endpoint set equals the live one. A missing record counts as empty."""
        clog = ctx.logger(__name__)
        clog.debug("diffing service: %s", service)
        live = self.inventory.derive_endpoint_set(service, ctx).endpoints
        try:
            stored = self.store.fetch(service, ctx).endpoints
        except NotFound:
            stored = set()
        # Only the servers are compared; the rest of the backend is operator-owned.
        in_sync = live == stored
        clog.debug("the %s service is %sin sync", service, "" if in_sync else "NOT ")
        return in_sync

    def sync_one(self, service: str, ctx: RequestContext) -> None:
        """Replace the stored endpoint set of ``service`` with cluster truth."""
        clog = ctx.logger(__name__)
        clog.debug("syncing service: %s", service)
        inv = self.inventory.derive_endpoint_set(service, ctx)
        if inv.task_count and not inv.routable_count:
            # Endpoints of tasks that have since been replaced must not stay routed.
            try:
                self.store.fetch(service, ctx)
            except NotFound:
                pass
            else:
                self.store.upsert_endpoint_set(service, set(), True, ctx)
                clog.debug("cleared the servers of %s", service)
            raise NoRoutableBindings(f"{service} runs {inv.task_count} tasks without network bindings")
        self.store.upsert_endpoint_set(service, inv.endpoints, True, ctx)

    # -- sweeps -----------------------------------------------------------

    def diff_all(self, ctx: RequestContext) -> SweepResult:
        clog = ctx.logger(__name__)
        result = SweepResult(services=self.inventory.list_service_names(ctx))
        for service in result.services:
            try:
                in_sync = self.diff_one(service, ctx)
            except TrackerError as exc:
                clog.debug("error diffing service %s: %s", service, exc)
                result.failures[service] = exc
                continue
            if not in_sync:
                result.out_of_sync.append(service)
        if result.out_of_sync:
            clog.info("services that are out of sync: %s", ", ".join(result.out_of_sync))
        else:
            clog.info("all services are in sync")
        return result

    def sync_all(self, ctx: RequestContext, pacing_ms: int = 0) -> SweepResult:
        """Sync every service, sleeping ``pacing_ms`` between services."""
        clog = ctx.logger(__name__)
        result = SweepResult(services=self.inventory.list_service_names(ctx))
        for i, service in enumerate(result.services):
            if i and pacing_ms > 0:
                self._sleep(pacing_ms / 1000.0)
            try:
                self.sync_one(service, ctx)
            except NoRoutableBindings as exc:
                clog.debug("skipping %s: %s", service, exc)
                result.skipped.append(service)
                continue
            except TrackerError as exc:
                clog.warning("error syncing service %s: %s", service, exc)
                result.failures[service] = exc
                continue
            result.synced.append(service)
        if not result.ok:
            clog.debug("one or more services were unable to be synced")
        return result

    def start_slow_sync(self, pacing_ms: int) -> Thread:
        """Run a paced :meth:`sync_all` on a detached thread."""
        thr = Thread(target=self._slow_sync, args=(pacing_ms,), daemon=True)
        thr.start()
        return thr

    def _slow_sync(self, pacing_ms: int) -> None:
        ctx = RequestContext.new("SyncSlow")
        clog = ctx.logger(__name__)
        clog.debug("syncing all services at a rate of one service every %d milliseconds", pacing_ms)
        try:
            result = self.sync_all(ctx, pacing_ms)
        except InventoryError as exc:
            clog.error("error slow syncing all services: %s", exc)
            return
        if result.ok:
            clog.info("successfully synced all services, one service every %d milliseconds", pacing_ms)
        else:
            clog.error("error slow syncing all services: %s", result.error)

    # -- background loop --------------------------------------------------

    def start(self) -> None:
        if self.sync_interval_s <= 0:
            return
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def _loop(self) -> None:
        log.info("background sync started, every %ds", self.sync_interval_s)
        while not self._stop.is_set():
            ctx = RequestContext.new("SyncLoop")
            try:
                result = self.sync_all(ctx)
                if not result.ok:
                    ctx.logger(__name__).error("background sync failed for %d services", len(result.failures))
            except TrackerError as exc:
                ctx.logger(__name__).error("background sync failed: %s", exc)
            self._stop.wait(self.sync_interval_s)

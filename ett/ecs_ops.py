from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .errors import InventoryError, ResolutionError
from .identity import IdentityCache, chunked
from .runtime import RequestContext

# DescribeTasks accepts at most 100 task ids per call.
DESCRIBE_TASKS_BATCH = 100


def service_name_from_arn(arn: str) -> str:
    """``arn:aws:ecs:...:service/[cluster/]name`` -> ``name``."""
    return arn.rsplit("/", 1)[-1]


def task_host_port(task: dict[str, Any]) -> int | None:
    """Host port of a task, or None when it exposes nothing routable.

    Only the first container and its first network binding are considered.
    Tasks with more containers or ports need a richer model than one endpoint
    per task.
    """
    containers = task.get("containers") or []
    if not containers:
        return None
    bindings = containers[0].get("networkBindings") or []
    if not bindings:
        return None
    port = bindings[0].get("hostPort")
    return int(port) if port else None


@dataclass
class Inventory:
    """What ECS reports for one service right now."""

    service: str
    endpoints: set[str] = field(default_factory=set)
    task_count: int = 0
    routable_count: int = 0
    unresolved: list[str] = field(default_factory=list)  # task arns skipped on resolution errors


class ClusterInventory:
    """Reads services, tasks and task addresses from one ECS cluster."""

    def __init__(self, ecs: Any, identity: IdentityCache, cluster: str):
        self.ecs = ecs
        self.identity = identity
        self.cluster = cluster

    def list_service_names(self, ctx: RequestContext) -> list[str]:
        arns: list[str] = []
        try:
            paginator = self.ecs.get_paginator("list_services")
            for page in paginator.paginate(cluster=self.cluster):
                arns.extend(page.get("serviceArns") or [])
        except (BotoCoreError, ClientError) as exc:
            ctx.logger(__name__).debug("error listing services")
            raise InventoryError("ecs.list_services()") from exc
        names = [service_name_from_arn(a) for a in arns]
        ctx.logger(__name__).debug("%d services listed", len(names))
        return names

    def list_task_ids(self, service: str, ctx: RequestContext) -> list[str]:
        """Task ARNs for ``service``; an empty name lists every task in the cluster."""
        params: dict[str, Any] = {"cluster": self.cluster}
        if service:
            params["serviceName"] = service
        task_ids: list[str] = []
        try:
            paginator = self.ecs.get_paginator("list_tasks")
            for page in paginator.paginate(**params):
                task_ids.extend(page.get("taskArns") or [])
        except (BotoCoreError, ClientError) as exc:
            ctx.logger(__name__).debug("error listing tasks for %r", service)
            raise InventoryError(f"ecs.list_tasks({service})") from exc
        return task_ids

    def describe_tasks(self, task_ids: list[str], ctx: RequestContext) -> list[dict[str, Any]]:
        if not task_ids:
            return []
        tasks: list[dict[str, Any]] = []
        for batch in chunked(task_ids, DESCRIBE_TASKS_BATCH):
            try:
                resp = self.ecs.describe_tasks(cluster=self.cluster, tasks=batch)
            except (BotoCoreError, ClientError) as exc:
                ctx.logger(__name__).debug("error describing tasks: %s", exc)
                raise InventoryError("ecs.describe_tasks()") from exc
            tasks.extend(resp.get("tasks") or [])
        return tasks

    def derive_endpoint_set(self, service: str, ctx: RequestContext) -> Inventory:
        log = ctx.logger(__name__)
        try:
            tasks = self.describe_tasks(self.list_task_ids(service, ctx), ctx)
        except InventoryError as exc:
            raise InventoryError(f"derive_endpoint_set({service})") from exc

        inv = Inventory(service=service, task_count=len(tasks))
        routable: list[tuple[dict[str, Any], int]] = []
        for t in tasks:
            port = task_host_port(t)
            if port is not None:
                routable.append((t, port))
        inv.routable_count = len(routable)
        if routable:
            self.identity.warm([t["containerInstanceArn"] for t, _ in routable if t.get("containerInstanceArn")], ctx)

        for task, port in routable:
            arn = task.get("containerInstanceArn")
            try:
                if not arn:
                    raise ResolutionError("task has no container instance")
                ip = self.identity.resolve_address(arn, ctx)
            except ResolutionError as exc:
                log.warning("skipping task %s of %s: %s", task.get("taskArn"), service, exc)
                inv.unresolved.append(task.get("taskArn", ""))
                continue
            inv.endpoints.add(f"{ip}:{port}")

        if inv.routable_count and not inv.endpoints:
            log.warning("none of the %d routable tasks of %s could be resolved", inv.routable_count, service)
        elif not inv.endpoints:
            log.debug("%s has no network attached", service)
        return inv

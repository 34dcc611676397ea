from __future__ import annotations

from threading import Lock
from typing import Any, Iterable

from botocore.exceptions import BotoCoreError, ClientError

from .errors import ResolutionError
from .runtime import RequestContext

# DescribeContainerInstances accepts at most 100 ARNs per call.
DESCRIBE_BATCH = 100


def chunked(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class IdentityCache:
    """Memoizes container instance ARN -> EC2 instance id -> private IP.

    Both maps are append-only for the life of the process. The lock guards map
    access only; lookups run outside it, so two threads missing on the same key
    may both query AWS and write the same answer.
    """

    def __init__(self, ecs: Any, ec2: Any, cluster: str):
        self.ecs = ecs
        self.ec2 = ec2
        self.cluster = cluster
        self.lock = Lock()
        self.instance_ids: dict[str, str] = {}  # container instance arn -> ec2 instance id
        self.private_ips: dict[str, str] = {}  # ec2 instance id -> private ip

    def resolve_address(self, container_instance_arn: str, ctx: RequestContext) -> str:
        ids = self.resolve_instance_ids([container_instance_arn], ctx)
        instance_id = ids.get(container_instance_arn)
        if instance_id is None:
            raise ResolutionError(f"no container instance found for {container_instance_arn}")
        return self.private_ip(instance_id, ctx)

    def resolve_instance_ids(self, arns: list[str], ctx: RequestContext) -> dict[str, str]:
        """Return the known instance ids for ``arns``, looking up the misses in one batch."""
        log = ctx.logger(__name__)
        found: dict[str, str] = {}
        missing: list[str] = []
        for arn in dict.fromkeys(arns):
            with self.lock:
                instance_id = self.instance_ids.get(arn)
            if instance_id is None:
                missing.append(arn)
            else:
                found[arn] = instance_id
        if not missing:
            return found

        for batch in chunked(missing, DESCRIBE_BATCH):
            try:
                resp = self.ecs.describe_container_instances(cluster=self.cluster, containerInstances=batch)
            except (BotoCoreError, ClientError) as exc:
                log.debug("error describing container instances")
                raise ResolutionError("ecs.describe_container_instances()") from exc
            for inst in resp.get("containerInstances") or []:
                arn = inst.get("containerInstanceArn")
                instance_id = inst.get("ec2InstanceId")
                if not arn or not instance_id:
                    continue
                log.debug("saving instance id %s for %s", instance_id, arn)
                with self.lock:
                    self.instance_ids[arn] = instance_id
                found[arn] = instance_id
            for failure in resp.get("failures") or []:
                log.debug("container instance lookup failed: %s (%s)", failure.get("arn"), failure.get("reason"))
        return found

    def private_ip(self, instance_id: str, ctx: RequestContext) -> str:
        with self.lock:
            ip = self.private_ips.get(instance_id)
        if ip is not None:
            return ip

        ip = None
        try:
            paginator = self.ec2.get_paginator("describe_instances")
            for page in paginator.paginate(InstanceIds=[instance_id]):
                for reservation in page.get("Reservations") or []:
                    for instance in reservation.get("Instances") or []:
                        if ip is None and instance.get("PrivateIpAddress"):
                            ip = instance["PrivateIpAddress"]
        except (BotoCoreError, ClientError) as exc:
            raise ResolutionError(f"ec2.describe_instances({instance_id})") from exc
        if ip is None:
            raise ResolutionError(f"no instances found for {instance_id}")

        ctx.logger(__name__).debug("saving instance and ip: %s %s", instance_id, ip)
        with self.lock:
            self.private_ips[instance_id] = ip
        return ip

    def warm(self, arns: list[str], ctx: RequestContext) -> None:
        """Prefetch instance ids for a task list so per-task resolution hits the cache."""
        try:
            self.resolve_instance_ids(arns, ctx)
        except ResolutionError as exc:
            # Per-task resolution retries the misses and skips only the broken ones.
            ctx.logger(__name__).warning("prefetching instance ids failed: %s", exc)

    def stats(self) -> dict[str, int]:
        with self.lock:
            return {"instance_ids": len(self.instance_ids), "private_ips": len(self.private_ips)}

from __future__ import annotations

from enum import Enum

from pydantic import ValidationError

from .api_models import Notification, TaskDetail, TaskEvent
from .errors import InvalidEvent
from .identity import IdentityCache
from .runtime import RequestContext
from .store import RoutingStore

# ECS task lifecycle states, see
# https://docs.aws.amazon.com/AmazonECS/latest/developerguide/task-lifecycle.html
RUNNING = "RUNNING"
STOPPED = "STOPPED"


class EventOutcome(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    IGNORED = "ignored"


def decode_notification(body: bytes | str) -> Notification:
    try:
        return Notification.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidEvent("could not decode sns notification") from exc


def service_from_group(group: str) -> str:
    """``service:hello`` -> ``hello``."""
    _, sep, name = group.partition(":")
    if not sep or not name:
        raise InvalidEvent(f"task group {group!r} does not name a service")
    return name


class EventIngestor:
    """Applies single ECS task state changes to the routing table.

    A running task is merged into its service's endpoint set and a stopping
    task is removed from it; nothing else about the cluster is queried.
    """

    def __init__(self, store: RoutingStore, identity: IdentityCache):
        self.store = store
        self.identity = identity

    def handle_notification(self, message_id: str, body: bytes | str) -> EventOutcome:
        ctx = RequestContext.for_message(message_id)
        log = ctx.logger(__name__)
        notif = decode_notification(body)
        try:
            event = TaskEvent.model_validate_json(notif.message)
        except ValidationError as exc:
            log.info("failed to decode ecs event: %s", exc)
            raise InvalidEvent("could not decode ecs event in notification") from exc
        outcome = self.apply(event.detail, ctx)
        log.info("handled sns notification for %s: %s", event.detail.group, outcome.value)
        return outcome

    def apply(self, detail: TaskDetail, ctx: RequestContext) -> EventOutcome:
        log = ctx.logger(__name__)
        # Only the first container and its first binding are tracked.
        if not detail.containers:
            log.debug("skipping message. no containers listed")
            return EventOutcome.IGNORED
        bindings = detail.containers[0].network_bindings
        if not bindings or not bindings[0].host_port:
            log.debug("skipping message. no network bindings on container")
            return EventOutcome.IGNORED

        running = detail.last_status == RUNNING and detail.desired_status == RUNNING
        stopping = detail.desired_status == STOPPED
        if not running and not stopping:
            log.debug("skipping %s: %s -> %s", detail.task_arn, detail.last_status, detail.desired_status)
            return EventOutcome.IGNORED

        service = service_from_group(detail.group)
        if not detail.container_instance_arn:
            log.warning("skipping %s of %s: task has no container instance", detail.task_arn, service)
            return EventOutcome.IGNORED
        ip = self.identity.resolve_address(detail.container_instance_arn, ctx)
        endpoint = f"{ip}:{bindings[0].host_port}"

        if running:
            self.store.upsert_endpoint_set(service, [endpoint], False, ctx)
            log.debug("added %s to %s", endpoint, service)
            return EventOutcome.ADDED
        self.store.remove_endpoint(service, endpoint, ctx)
        log.debug("removed %s from %s", endpoint, service)
        return EventOutcome.REMOVED

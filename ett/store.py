from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotFound, RetryExhausted, StoreError, VersionConflict
from .runtime import RequestContext

# Attribute layout of a Traefik backend item:
#   {"id": "<name>__backend", "name": <name>, "version": <n>,
#    "backend": {"Servers": {"<ip:port>": {"URL": "http://<ip:port>"}}, ...}}
# Everything in "backend" other than "Servers" is operator-owned.
SERVERS_KEY = "Servers"

_deserializer = TypeDeserializer()
_serializer = TypeSerializer()


def record_id(service: str) -> str:
    return f"{service}__backend"


def server_entry(endpoint: str) -> dict[str, Any]:
    return {"URL": f"http://{endpoint}"}


def _deserialize(raw: dict[str, Any]) -> dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in raw.items()}


def _serialize(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in item.items()}


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


@dataclass(frozen=True)
class RoutingRecord:
    id: str
    name: str
    version: int
    servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    route_config: dict[str, Any] = field(default_factory=dict)

    @property
    def endpoints(self) -> set[str]:
        return set(self.servers)

    def backend(self) -> dict[str, Any]:
        out = dict(self.route_config)
        out[SERVERS_KEY] = dict(self.servers)
        return out

    def with_servers(self, servers: dict[str, dict[str, Any]]) -> "RoutingRecord":
        return replace(self, servers=servers)

    @classmethod
    def new(cls, service: str, endpoints: Iterable[str]) -> "RoutingRecord":
        return cls(
            id=record_id(service),
            name=service,
            version=0,
            servers={ep: server_entry(ep) for ep in endpoints},
        )

    @classmethod
    def from_item(cls, raw: dict[str, Any]) -> "RoutingRecord":
        item = _deserialize(raw)
        backend = dict(item.get("backend") or {})
        servers = backend.pop(SERVERS_KEY, None) or {}
        return cls(
            id=str(item["id"]),
            name=str(item.get("name", "")),
            version=int(item.get("version", 0)),
            servers={str(k): dict(v or {}) for k, v in servers.items()},
            route_config=backend,
        )

    def to_item(self) -> dict[str, Any]:
        return _serialize({"id": self.id, "name": self.name, "version": self.version, "backend": self.backend()})


class RoutingStore:
    """Reads and writes Traefik backend records with optimistic locking.

    Every write is conditioned on the ``version`` attribute the writer last
    read, so concurrent writers for the same service never clobber each other:
    the loser gets :class:`VersionConflict` and the retry loops below re-read
    and re-apply their change on top of the winner's.
    """

    def __init__(
        self,
        dynamodb: Any,
        table: str,
        max_tries: int = 10,
        retry_backoff_s: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.dynamodb = dynamodb
        self.table = table
        self.max_tries = max(1, int(max_tries))
        self.retry_backoff_s = max(0.0, float(retry_backoff_s))
        self._sleep = sleep

    def fetch(self, service: str, ctx: RequestContext) -> RoutingRecord:
        log = ctx.logger(__name__)
        key = record_id(service)
        try:
            resp = self.dynamodb.get_item(
                TableName=self.table,
                Key={"id": {"S": key}},
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as exc:
            log.debug("error getting item from dynamodb")
            raise StoreError(f"dynamodb.get_item({key})") from exc
        item = resp.get("Item")
        if not item:
            log.debug("no item returned from dynamodb for %s", key)
            raise NotFound(f"no routing record for {service}")
        return RoutingRecord.from_item(item)

    def create_if_absent(self, service: str, endpoints: Iterable[str], ctx: RequestContext) -> RoutingRecord:
        log = ctx.logger(__name__)
        record = RoutingRecord.new(service, endpoints)
        log.debug("creating backend in dynamodb: %s", service)
        try:
            self.dynamodb.put_item(
                TableName=self.table,
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(id)",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise VersionConflict(f"{record.id} was created concurrently") from exc
            raise StoreError(f"dynamodb.put_item({record.id})") from exc
        except BotoCoreError as exc:
            raise StoreError(f"dynamodb.put_item({record.id})") from exc
        log.debug("successfully created backend in dynamodb: %s", service)
        return record

    def apply_with_optimistic_lock(self, record: RoutingRecord, ctx: RequestContext) -> None:
        """Write ``record`` only if the stored version still equals ``record.version``.

        On success the stored version is ``record.version + 1``.
        """
        try:
            self.dynamodb.update_item(
                TableName=self.table,
                Key={"id": {"S": record.id}},
                ConditionExpression="#v = :v",
                UpdateExpression="SET #v = #v + :one, #b = :b",
                ExpressionAttributeNames={"#v": "version", "#b": "backend"},
                ExpressionAttributeValues={
                    ":v": {"N": str(record.version)},
                    ":one": {"N": "1"},
                    ":b": _serializer.serialize(record.backend()),
                },
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise VersionConflict(f"{record.id} is no longer at version {record.version}") from exc
            ctx.logger(__name__).debug("error updating backend in dynamodb")
            raise StoreError(f"dynamodb.update_item({record.id})") from exc
        except BotoCoreError as exc:
            raise StoreError(f"dynamodb.update_item({record.id})") from exc

    def upsert_endpoint_set(
        self,
        service: str,
        endpoints: Iterable[str],
        overwrite: bool,
        ctx: RequestContext,
    ) -> RoutingRecord:
        """Store ``endpoints`` for ``service``, creating the record if needed.

        With ``overwrite`` the stored endpoint set is replaced; otherwise the
        endpoints are added to it and existing entries are kept as they are.
        Returns the record as committed.
        """
        log = ctx.logger(__name__)
        desired = list(endpoints)
        conflict: VersionConflict | None = None
        for attempt in range(1, self.max_tries + 1):
            try:
                current = self.fetch(service, ctx)
            except NotFound:
                log.debug("backend not found: %s", service)
                try:
                    return self.create_if_absent(service, desired, ctx)
                except VersionConflict as exc:
                    conflict = exc
                    log.debug("backend %s created concurrently. trying again...", service)
                    self._backoff(attempt)
                    continue

            if overwrite:
                servers = {ep: server_entry(ep) for ep in desired}
            else:
                servers = dict(current.servers)
                for ep in desired:
                    servers.setdefault(ep, server_entry(ep))

            updated = current.with_servers(servers)
            try:
                self.apply_with_optimistic_lock(updated, ctx)
            except VersionConflict as exc:
                conflict = exc
                log.debug("item locked on try %d. trying again...", attempt)
                self._backoff(attempt)
                continue
            log.debug("successfully updated backend: %s", service)
            return replace(updated, version=updated.version + 1)

        raise RetryExhausted("upsert_endpoint_set", service, self.max_tries) from conflict

    def remove_endpoint(self, service: str, endpoint: str, ctx: RequestContext) -> None:
        log = ctx.logger(__name__)
        log.debug("removing server %s from %s", endpoint, service)
        conflict: VersionConflict | None = None
        for attempt in range(1, self.max_tries + 1):
            current = self.fetch(service, ctx)
            if endpoint not in current.servers:
                log.debug("%s is not a server of %s", endpoint, service)
                return
            servers = dict(current.servers)
            del servers[endpoint]
            try:
                self.apply_with_optimistic_lock(current.with_servers(servers), ctx)
            except VersionConflict as exc:
                conflict = exc
                log.debug("item locked on try %d. trying again...", attempt)
                self._backoff(attempt)
                continue
            return

        raise RetryExhausted("remove_endpoint", service, self.max_tries) from conflict

    def _backoff(self, attempt: int) -> None:
        # No point waiting once the last attempt has failed.
        if attempt < self.max_tries and self.retry_backoff_s > 0:
            self._sleep(self.retry_backoff_s)

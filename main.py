from __future__ import annotations

import boto3
from botocore.config import Config
from fastapi import FastAPI

from ett.api import create_app
from ett.ecs_ops import ClusterInventory
from ett.events import EventIngestor
from ett.identity import IdentityCache
from ett.reconciler import Reconciler
from ett.runtime import configure_logging
from ett.settings import Settings, settings
from ett.store import RoutingStore


def _client(service: str, cfg: Settings):
    return boto3.client(
        service,
        region_name=cfg.region,
        config=Config(retries={"max_attempts": 5, "mode": "standard"}),
    )


def build_app(cfg: Settings = settings) -> FastAPI:
    configure_logging(cfg.debug)

    ecs = _client("ecs", cfg)
    identity = IdentityCache(ecs=ecs, ec2=_client("ec2", cfg), cluster=cfg.cluster)
    store = RoutingStore(
        _client("dynamodb", cfg),
        table=cfg.table,
        max_tries=cfg.max_tries,
        retry_backoff_s=cfg.retry_backoff_ms / 1000.0,
    )
    reconciler = Reconciler(
        ClusterInventory(ecs, identity, cfg.cluster),
        store,
        sync_interval_s=cfg.sync_interval_s,
    )
    return create_app(reconciler, EventIngestor(store, identity), slow_sync_ms=cfg.slow_sync_ms)


app = build_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)

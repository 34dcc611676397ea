from __future__ import annotations

import logging
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from .api_models import Notification
from .errors import NoRoutableBindings, TrackerError, describe
from .events import EventIngestor, decode_notification
from .reconciler import Reconciler
from .runtime import RequestContext
from .sns import NOTIFICATION, SUBSCRIPTION_CONFIRMATION, confirm_subscription

log = logging.getLogger(__name__)


def _text(body: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status_code)


def create_app(
    reconciler: Reconciler,
    ingestor: EventIngestor,
    slow_sync_ms: int = 1000,
    confirm: Callable[[Notification], None] = confirm_subscription,
) -> FastAPI:
    app = FastAPI(title="ECS Task Tracker")

    @app.on_event("startup")
    def startup() -> None:
        reconciler.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        reconciler.stop()

    @app.get("/health", response_class=PlainTextResponse)
    def health():
        return _text("Healthy")

    @app.get("/diff", response_class=PlainTextResponse)
    def diff_all():
        ctx = RequestContext.new("DiffAll")
        try:
            result = reconciler.diff_all(ctx)
        except TrackerError as exc:
            ctx.logger(__name__).error("error comparing services: %s", describe(exc))
            return _text(f"error comparing services: {describe(exc)}", 500)
        if result.error is not None:
            lines = [f"error comparing services: {describe(result.error)}"]
            if result.out_of_sync:
                lines.append("services out of sync:")
                lines.extend(result.out_of_sync)
            return _text("\n".join(lines), 500)
        if not result.out_of_sync:
            return _text("all services in sync")
        return _text("services out of sync:\n" + "\n".join(result.out_of_sync))

    @app.get("/diff/{service}", response_class=PlainTextResponse)
    def diff(service: str):
        ctx = RequestContext.new("DiffOne")
        try:
            in_sync = reconciler.diff_one(service, ctx)
        except TrackerError as exc:
            ctx.logger(__name__).error("error diffing service %s: %s", service, describe(exc))
            return _text(describe(exc), 500)
        state = "in sync" if in_sync else "out of sync"
        ctx.logger(__name__).info("%s is %s", service, state)
        return _text(f"{service} is {state}")

    @app.post("/event", response_class=PlainTextResponse)
    async def ecs_event(request: Request):
        sns_type = request.headers.get("x-amz-sns-message-type", "")
        message_id = request.headers.get("x-amz-sns-message-id", "")
        body = await request.body()

        if sns_type == SUBSCRIPTION_CONFIRMATION:
            try:
                notif = decode_notification(body)
                await run_in_threadpool(confirm, notif)
            except TrackerError as exc:
                log.error("sns subscription failed: %s", describe(exc))
                return _text(f"error failed to confirm subscription: {describe(exc)}", 500)
            log.info("subscribed to sns topic %s", notif.topic_arn)
            return _text("subscribed to sns")

        if sns_type == NOTIFICATION:
            try:
                await run_in_threadpool(ingestor.handle_notification, message_id, body)
            except TrackerError as exc:
                RequestContext.for_message(message_id).logger(__name__).error(
                    "error processing ecs event: %s", describe(exc)
                )
                return _text(describe(exc), 500)
        return _text("ecs event processed successfully")

    @app.get("/sync", response_class=PlainTextResponse)
    def sync_all():
        ctx = RequestContext.new("SyncAll")
        try:
            result = reconciler.sync_all(ctx)
        except TrackerError as exc:
            ctx.logger(__name__).error("error syncing services: %s", describe(exc))
            return _text("error syncing services", 500)
        if result.error is not None:
            ctx.logger(__name__).error("error syncing one or more services: %s", describe(result.error))
            return _text("error syncing services: " + ", ".join(result.failures), 500)
        ctx.logger(__name__).info("successfully synced all services")
        return _text("all services synced")

    @app.get("/sync/{service}", response_class=PlainTextResponse)
    def sync(service: str):
        ctx = RequestContext.new("SyncOne")
        try:
            reconciler.sync_one(service, ctx)
        except NoRoutableBindings as exc:
            ctx.logger(__name__).info("nothing to sync: %s", exc)
            return _text(f"{service} has no network bindings")
        except TrackerError as exc:
            ctx.logger(__name__).error("error syncing service '%s': %s", service, describe(exc))
            return _text(f"sync({service}): {describe(exc)}", 500)
        ctx.logger(__name__).info("successfully synced service: %s", service)
        return _text(f"{service} synced")

    @app.get("/syncslow", response_class=PlainTextResponse)
    @app.get("/syncslow/{milliseconds}", response_class=PlainTextResponse)
    def sync_slow(milliseconds: str | None = None):
        if milliseconds is None:
            pacing = slow_sync_ms
        else:
            try:
                pacing = int(milliseconds)
            except ValueError:
                return _text(f"invalid milliseconds: {milliseconds!r}", 400)
            if pacing < 0:
                return _text(f"invalid milliseconds: {milliseconds!r}", 400)
        reconciler.start_slow_sync(pacing)
        return _text(f"syncing a service every {pacing} milliseconds")

    return app

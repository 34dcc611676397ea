from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    # botocore is very chatty at DEBUG.
    logging.getLogger("botocore").setLevel(logging.INFO)


class _ContextAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"{self.extra['request_id']} ::: {msg}", kwargs


@dataclass(frozen=True)
class RequestContext:
    """Correlation id for one inbound trigger (HTTP request or SNS delivery).

    Passed explicitly through every core call so that log lines emitted by the
    store, the inventory reader and the identity cache can be tied back to the
    request that caused them.
    """

    id: str
    _loggers: dict[str, logging.LoggerAdapter] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def new(cls, operation: str) -> "RequestContext":
        return cls(id=f"{operation}:::{int(time.time())}")

    @classmethod
    def for_message(cls, message_id: str) -> "RequestContext":
        return cls(id=f"SNSNotif::{message_id}")

    def logger(self, name: str) -> logging.LoggerAdapter:
        adapter = self._loggers.get(name)
        if adapter is None:
            adapter = _ContextAdapter(logging.getLogger(name), {"request_id": self.id})
            self._loggers[name] = adapter
        return adapter

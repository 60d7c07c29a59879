"""
Request-scoped context passed explicitly through the workflow.

One RequestContext is created per inbound webhook call. It carries the
correlation id echoed in every response and a logger that prefixes each line
with that id. Nothing here is shared between requests.
"""

import logging
import uuid
from dataclasses import dataclass, field


class _RequestLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RequestContext:
    request_id: str = field(default_factory=new_request_id)
    logger_name: str = "formrelay.request"

    @property
    def log(self) -> logging.LoggerAdapter:
        return _RequestLogAdapter(
            logging.getLogger(self.logger_name), {"request_id": self.request_id}
        )

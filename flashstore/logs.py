import json
import logging
from datetime import datetime, timezone
from typing import Mapping

from .middleware import principal_ctx_var, request_id_ctx_var


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line for the shop's audit trail.

    Domain events (``transaction.created``, ``user.deactivated``, ...) pass
    their fields through ``extra={"extra_data": {...}}``; those are merged at
    the top level next to the request id and principal of the request that
    caused them.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = request_id_ctx_var.get()
        if request_id:
            payload["request_id"] = request_id
        principal = principal_ctx_var.get()
        if principal:
            payload["principal"] = principal
        extra = getattr(record, "extra_data", None)
        if isinstance(extra, Mapping):
            payload.update(extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    # LOG_JSON=false gives plain lines for local runs
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.root.handlers = [handler]
    logging.root.setLevel(level.upper())

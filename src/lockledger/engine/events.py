"""Structured event logging.

Each state transition is emitted as one JSON line on the module's logger,
the in-process analogue of a contract event. The library never configures
handlers; the CLI does.
"""

import json
import logging
from typing import Any, Dict

Json = Dict[str, Any]


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit a single JSONL event at INFO level."""
    if not logger.isEnabledFor(logging.INFO):
        return
    payload: Json = {"event": str(event)}
    payload.update(fields)
    logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))

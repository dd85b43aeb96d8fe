"""Line-delimited JSON protocol between the supervisor and the worker.

    Request:  {"command": "predict"|"features"|"ping", "data": {...}, "requestId": <int>}
    Response: {"requestId": <int>, "status": "ok"|"error", "result"?: ..., "error"?: "..."}
    Ready:    {"status": "ready"}   (no requestId, emitted once at startup)

One message per line, UTF-8.
"""

import json
from typing import Any, Dict, Optional

COMMAND_PREDICT = "predict"
COMMAND_FEATURES = "features"
COMMAND_PING = "ping"
COMMANDS = frozenset({COMMAND_PREDICT, COMMAND_FEATURES, COMMAND_PING})

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_READY = "ready"

REQUEST_ID_KEY = "requestId"


def _dumps(message: Dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, default=str) + "\n"


def encode_request(command: str, data: Any, request_id: int) -> str:
    return _dumps({"command": command, "data": data, REQUEST_ID_KEY: request_id})


def encode_result(request_id: Any, result: Any) -> str:
    return _dumps({REQUEST_ID_KEY: request_id, "status": STATUS_OK, "result": result})


def encode_error(request_id: Any, error: str) -> str:
    return _dumps({REQUEST_ID_KEY: request_id, "status": STATUS_ERROR, "error": error})


def encode_ready() -> str:
    return _dumps({"status": STATUS_READY})


def decode_message(line: str) -> Dict[str, Any]:
    """Parse one protocol line. Raises ValueError unless it is a JSON object."""
    message = json.loads(line)
    if not isinstance(message, dict):
        raise ValueError(f"expected a JSON object, got {type(message).__name__}")
    return message


def is_ready_message(message: Dict[str, Any]) -> bool:
    return REQUEST_ID_KEY not in message and message.get("status") == STATUS_READY


def request_id_of(message: Dict[str, Any]) -> Optional[Any]:
    return message.get(REQUEST_ID_KEY)

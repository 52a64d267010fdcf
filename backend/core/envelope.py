"""
Response envelope for the warehouse integration API.

  {"status": "success" | "error", "code": <http status>, "message": ...,
   "data": ..., "meta": {"timestamp": ..., "api_version": "v1"}}

Error envelopes also carry a top-level "error" string.
"""

from datetime import datetime, timezone
from typing import Any

API_VERSION = "v1"
WAREHOUSE_API_PREFIX = "/api/warehouse/v1"


def _meta() -> dict:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), "api_version": API_VERSION}


def success(data: Any = None, message: str = "Success", code: int = 200) -> dict:
    return {"status": "success", "code": code, "message": message, "data": data, "meta": _meta()}


def failure(message: str, code: int, details: Any = None) -> dict:
    body = {"status": "error", "code": code, "message": message, "error": message, "data": None, "meta": _meta()}
    if details is not None:
        body["details"] = details
    return body

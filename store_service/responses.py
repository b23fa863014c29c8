"""Response envelope shared by every endpoint: ``{status, message, data}``."""
from typing import Any, Dict


def success(message: str, data: Any = None) -> Dict[str, Any]:
    return {"status": "success", "message": message, "data": data}


def error(message: str, status_code: int, errors: Any = None) -> Dict[str, Any]:
    body = {"status": "fail" if 400 <= status_code < 500 else "error", "message": message}
    if errors is not None:
        body["errors"] = errors
    return body

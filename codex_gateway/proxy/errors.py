"""OpenAI-style error bodies returned by the gateway itself."""

from fastapi.responses import JSONResponse

INVALID_REQUEST_ERROR = "invalid_request_error"
UPSTREAM_CONNECTION_ERROR = "upstream_connection_error"
UPSTREAM_ERROR = "upstream_error"


def error_body(error_type: str, message: str) -> dict:
    return {"error": {"type": error_type, "message": message}}


def gateway_error(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(error_type, message))

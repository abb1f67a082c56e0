"""
Provider-style API errors.

Each error renders as {"errors": [{"code", "title", "detail"}]} with its
HTTP status; the handlers are registered on the app in main.py.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from smssink.schemas import ErrorDetail, ErrorResponse


class ProviderError(Exception):
    """Base class for errors returned to API clients."""
    status_code = 500
    code = "10000"
    title = "Internal Server Error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(errors=[ErrorDetail(code=self.code, title=self.title, detail=self.detail)])


class MalformedInput(ProviderError):
    """Body could not be parsed as the expected JSON structure."""
    status_code = 400
    code = "10005"
    title = "Invalid parameter"


class Unauthorized(ProviderError):
    status_code = 401
    code = "10001"
    title = "Unauthorized"


class InvalidParameter(ProviderError):
    """Well-formed body that breaks a business rule (missing field etc.)."""
    status_code = 422
    code = "10005"
    title = "Invalid parameter"


class MethodNotAllowed(ProviderError):
    status_code = 405
    code = "10003"
    title = "Method not allowed"


class InternalFailure(ProviderError):
    status_code = 500
    code = "10000"
    title = "Internal Server Error"


async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

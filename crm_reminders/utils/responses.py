from typing import Any, Dict, List, Optional
from fastapi import status, Request
from fastapi.responses import JSONResponse
from crm_reminders.schemas.response_schemas import ApiResponse, ResponseStatus


def _request_id(request: Request) -> Optional[str]:
    # Handlers can run before RequestIDMiddleware has stamped the request
    return getattr(request.state, "request_id", None)


class ResponseBuilder:
    """Builder class for creating standardized responses"""

    @staticmethod
    def success(
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        """Create a success response"""
        response = ApiResponse(
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        data: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Create an error response"""
        response_meta = meta or {}
        if error_code:
            response_meta["error_code"] = error_code

        response = ApiResponse(
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            data=data,
            meta=response_meta if response_meta else None,
            errors=errors,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

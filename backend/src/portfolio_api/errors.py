"""Domain errors shared by services and mapped to HTTP responses by the routers."""

from __future__ import annotations

from fastapi import HTTPException, status


class ServiceError(Exception):
    """Base error carrying a machine readable code and HTTP status."""

    code = "service_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ProjectNotFoundError(ServiceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidProjectError(ServiceError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class SessionNotFoundError(ServiceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidConsentError(ServiceError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class ServiceNotFoundError(ServiceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PrivacyConfigError(ServiceError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


def to_http_exception(exc: ServiceError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message},
    )

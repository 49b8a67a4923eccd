from fastapi import HTTPException, Request, status

from estate_api.core.auth import Principal
from estate_api.jobs.payment_expiry import PaymentExpiryEngine
from estate_api.jobs.post_expiry import PostExpiryEngine
from estate_api.jobs.scheduler import JobScheduler
from estate_api.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    UnavailableError,
    ValidationFailedError,
)
from estate_api.services.posts import PostService
from estate_api.services.repository import PostgresRepository

_STATUS_BY_ERROR: tuple[tuple[type[ServiceError], int], ...] = (
    (ValidationFailedError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnavailableError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def get_repository(request: Request) -> PostgresRepository:
    return request.app.state.repository


def get_post_service(request: Request) -> PostService:
    return request.app.state.post_service


def get_post_expiry_engine(request: Request) -> PostExpiryEngine:
    return request.app.state.post_expiry_engine


def get_payment_expiry_engine(request: Request) -> PaymentExpiryEngine:
    return request.app.state.payment_expiry_engine


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def require_scopes(principal: Principal, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def http_error(exc: ServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

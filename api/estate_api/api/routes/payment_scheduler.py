from dataclasses import asdict

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from estate_api.api.deps import get_payment_expiry_engine, http_error, require_scopes
from estate_api.core.auth import Principal
from estate_api.core.security import get_current_principal
from estate_api.jobs.payment_expiry import PaymentExpiryEngine
from estate_api.schemas.payments import (
    CancelExpiredResponse,
    ExpiredSummaryOut,
    ExpiredSummaryResponse,
    PaginationOut,
    PaymentCancelRequest,
    PaymentCancelResponse,
    PaymentOut,
    PaymentStatsOut,
    PaymentStatsResponse,
    PendingPaymentOut,
    PendingPaymentsData,
    PendingPaymentsResponse,
)
from estate_api.services.errors import ServiceError

router = APIRouter()


@router.get("/stats", response_model=PaymentStatsResponse)
async def get_payment_stats(
    principal: Principal = Depends(get_current_principal),
    engine: PaymentExpiryEngine = Depends(get_payment_expiry_engine),
) -> PaymentStatsResponse:
    require_scopes(principal, {"payments:manage"})
    try:
        stats = await engine.get_expiring_stats()
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PaymentStatsResponse(data=PaymentStatsOut(**stats))


@router.get("/expired-summary", response_model=ExpiredSummaryResponse)
async def get_expired_summary(
    principal: Principal = Depends(get_current_principal),
    engine: PaymentExpiryEngine = Depends(get_payment_expiry_engine),
) -> ExpiredSummaryResponse:
    require_scopes(principal, {"payments:manage"})
    try:
        summary = await engine.get_expired_summary()
    except ServiceError as exc:
        raise http_error(exc) from exc
    return ExpiredSummaryResponse(data=ExpiredSummaryOut(**summary))


@router.post("/cancel-expired", response_model=CancelExpiredResponse)
async def cancel_expired_payments(
    principal: Principal = Depends(get_current_principal),
    engine: PaymentExpiryEngine = Depends(get_payment_expiry_engine),
) -> CancelExpiredResponse:
    require_scopes(principal, {"payments:manage"})
    result = await engine.run_manual_cancel()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message)
    return CancelExpiredResponse(message=result.message, cancelled_count=result.cancelled_count)


@router.get("/pending", response_model=PendingPaymentsResponse)
async def list_pending_payments(
    principal: Principal = Depends(get_current_principal),
    engine: PaymentExpiryEngine = Depends(get_payment_expiry_engine),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> PendingPaymentsResponse:
    require_scopes(principal, {"payments:manage"})
    try:
        listing = await engine.list_pending_payments(page=page, limit=limit)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PendingPaymentsResponse(
        data=PendingPaymentsData(
            payments=[PendingPaymentOut(**asdict(payment), **annotation) for payment, annotation in listing["payments"]],
            pagination=PaginationOut(**listing["pagination"]),
        )
    )


@router.post("/cancel/{payment_id}", response_model=PaymentCancelResponse)
async def cancel_payment(
    payment_id: str,
    payload: PaymentCancelRequest | None = Body(default=None),
    principal: Principal = Depends(get_current_principal),
    engine: PaymentExpiryEngine = Depends(get_payment_expiry_engine),
) -> PaymentCancelResponse:
    require_scopes(principal, {"payments:manage"})
    try:
        payment = await engine.cancel_payment(
            payment_id,
            reason=payload.reason if payload is not None else None,
            actor_user_id=principal.actor_id,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return PaymentCancelResponse(message="Đã hủy giao dịch thành công", data=PaymentOut.from_record(payment))

"""API endpoints for Payments module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.payments.schemas import (
    AllocationRequest,
    PaymentCancel,
    PaymentCreate,
    PaymentDetailResponse,
    PaymentFail,
    PaymentFilters,
    PaymentItemCancel,
    PaymentItemResponse,
    PaymentModeSummary,
    PaymentResponse,
    PaymentVerify,
    RefundCreate,
)
from src.modules.payments.service import PaymentService
from src.modules.payments.status import PaymentMode, PaymentStatus
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/payments", tags=["Payments"])
items_router = APIRouter(prefix="/payment-items", tags=["Payments"])


@router.post(
    "",
    response_model=ApiResponse[PaymentDetailResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
):
    """Record a received payment (PENDING until allocated)."""
    service = PaymentService(db)
    payment = await service.create_payment(data)
    return ApiResponse(
        success=True,
        message="Payment recorded",
        data=PaymentDetailResponse.model_validate(payment),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    student_id: int | None = Query(None),
    status: PaymentStatus | None = Query(None),
    payment_mode: PaymentMode | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List payments with filters."""
    service = PaymentService(db)
    filters = PaymentFilters(
        student_id=student_id,
        status=status,
        payment_mode=payment_mode,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    payments, total = await service.list_payments(filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[PaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get("/statistics", response_model=ApiResponse[list[PaymentModeSummary]])
async def get_payment_statistics(
    db: AsyncSession = Depends(get_db),
):
    service = PaymentService(db)
    return ApiResponse(success=True, data=await service.get_statistics())


@router.get("/{payment_id}", response_model=ApiResponse[PaymentDetailResponse])
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = PaymentService(db)
    payment = await service.get_payment_by_id(payment_id)
    return ApiResponse(success=True, data=PaymentDetailResponse.model_validate(payment))


@router.post("/{payment_id}/verify", response_model=ApiResponse[PaymentDetailResponse])
async def verify_payment(
    payment_id: int,
    data: PaymentVerify,
    db: AsyncSession = Depends(get_db),
):
    """Confirm a pending non-cash payment so it can be allocated."""
    service = PaymentService(db)
    payment = await service.verify_payment(payment_id, data.verified_by_id)
    return ApiResponse(
        success=True,
        message="Payment verified",
        data=PaymentDetailResponse.model_validate(payment),
    )


@router.post("/{payment_id}/allocate", response_model=ApiResponse[PaymentDetailResponse])
async def allocate_payment(
    payment_id: int,
    data: AllocationRequest,
    db: AsyncSession = Depends(get_db),
):
    """Allocate a pending payment across invoice items (all or nothing)."""
    service = PaymentService(db)
    payment = await service.allocate_payment(payment_id, data.targets, data.allocated_by_id)
    return ApiResponse(
        success=True,
        message="Payment allocated",
        data=PaymentDetailResponse.model_validate(payment),
    )


@router.post("/{payment_id}/fail", response_model=ApiResponse[PaymentDetailResponse])
async def fail_payment(
    payment_id: int,
    data: PaymentFail,
    db: AsyncSession = Depends(get_db),
):
    service = PaymentService(db)
    payment = await service.fail_payment(payment_id, data.reason, data.failed_by_id)
    return ApiResponse(success=True, data=PaymentDetailResponse.model_validate(payment))


@router.post("/{payment_id}/cancel", response_model=ApiResponse[PaymentDetailResponse])
async def cancel_payment(
    payment_id: int,
    data: PaymentCancel,
    db: AsyncSession = Depends(get_db),
):
    """Cancel a payment, reversing every completed allocation."""
    service = PaymentService(db)
    payment = await service.cancel_payment(payment_id, data.cancelled_by_id, data.reason)
    return ApiResponse(
        success=True,
        message="Payment cancelled",
        data=PaymentDetailResponse.model_validate(payment),
    )


# --- Payment items (allocations) ---


@items_router.get("/{payment_item_id}", response_model=ApiResponse[PaymentItemResponse])
async def get_payment_item(
    payment_item_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = PaymentService(db)
    payment_item = await service.get_payment_item(payment_item_id)
    return ApiResponse(success=True, data=PaymentItemResponse.model_validate(payment_item))


@items_router.post("/{payment_item_id}/cancel", response_model=ApiResponse[PaymentItemResponse])
async def cancel_payment_item(
    payment_item_id: int,
    data: PaymentItemCancel,
    db: AsyncSession = Depends(get_db),
):
    """Cancel one allocation and restore the invoice item balance."""
    service = PaymentService(db)
    payment_item = await service.cancel_payment_item(
        payment_item_id, data.cancelled_by_id, data.reason
    )
    return ApiResponse(
        success=True,
        message="Payment item cancelled",
        data=PaymentItemResponse.model_validate(payment_item),
    )


@items_router.post("/{payment_item_id}/refund", response_model=ApiResponse[PaymentItemResponse])
async def refund_payment_item(
    payment_item_id: int,
    data: RefundCreate,
    db: AsyncSession = Depends(get_db),
):
    """Refund all or part of one allocation."""
    service = PaymentService(db)
    payment_item = await service.refund_payment_item(
        payment_item_id,
        data.amount,
        data.refunded_by_id,
        refund_reference=data.refund_reference,
        reason=data.reason,
    )
    return ApiResponse(
        success=True,
        message="Payment item refunded",
        data=PaymentItemResponse.model_validate(payment_item),
    )

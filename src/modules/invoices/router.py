"""API endpoints for Invoices module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.fee_structures.models import Term
from src.modules.invoices.schemas import (
    DueDateUpdate,
    InvoiceCancel,
    InvoiceCreate,
    InvoiceDetailResponse,
    InvoiceFilters,
    InvoiceItemResponse,
    InvoiceResponse,
    InvoiceStatusSummary,
    StatusRefreshResult,
    WaiverCreate,
    WaiverRevoke,
)
from src.modules.invoices.service import InvoiceService
from src.modules.invoices.status import InvoiceStatus
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post(
    "",
    response_model=ApiResponse[InvoiceDetailResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
):
    """Issue an invoice for a student from a fee structure."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(data)
    return ApiResponse(
        success=True,
        message="Invoice created successfully",
        data=InvoiceDetailResponse.model_validate(invoice),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceResponse]],
)
async def list_invoices(
    student_id: int | None = Query(None),
    academic_year: str | None = Query(None),
    term: Term | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with filters."""
    service = InvoiceService(db)
    filters = InvoiceFilters(
        student_id=student_id,
        academic_year=academic_year,
        term=term,
        status=status,
        page=page,
        limit=limit,
    )
    invoices, total = await service.list_invoices(filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[InvoiceResponse.model_validate(inv) for inv in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get("/outstanding", response_model=ApiResponse[list[InvoiceDetailResponse]])
async def list_outstanding_invoices(
    student_id: int | None = Query(None),
    academic_year: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Unpaid, partially paid and overdue invoices."""
    service = InvoiceService(db)
    invoices = await service.list_outstanding(student_id, academic_year)
    return ApiResponse(
        success=True,
        data=[InvoiceDetailResponse.model_validate(inv) for inv in invoices],
    )


@router.get("/statistics", response_model=ApiResponse[list[InvoiceStatusSummary]])
async def get_invoice_statistics(
    academic_year: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    service = InvoiceService(db)
    return ApiResponse(success=True, data=await service.get_statistics(academic_year))


@router.post("/refresh-statuses", response_model=ApiResponse[StatusRefreshResult])
async def refresh_invoice_statuses(
    student_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Re-derive statuses of open invoices as of today (marks overdue ones)."""
    service = InvoiceService(db)
    return ApiResponse(success=True, data=await service.refresh_statuses(student_id))


@router.get("/{invoice_id}", response_model=ApiResponse[InvoiceDetailResponse])
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get invoice by ID with all items."""
    service = InvoiceService(db)
    invoice = await service.get_invoice_by_id(invoice_id)
    return ApiResponse(success=True, data=InvoiceDetailResponse.model_validate(invoice))


@router.post("/{invoice_id}/cancel", response_model=ApiResponse[InvoiceDetailResponse])
async def cancel_invoice(
    invoice_id: int,
    data: InvoiceCancel,
    db: AsyncSession = Depends(get_db),
):
    """Cancel an invoice that has no active payment allocations."""
    service = InvoiceService(db)
    invoice = await service.cancel_invoice(invoice_id, data.cancelled_by_id, data.reason)
    return ApiResponse(
        success=True,
        message="Invoice cancelled",
        data=InvoiceDetailResponse.model_validate(invoice),
    )


@router.patch("/{invoice_id}/due-date", response_model=ApiResponse[InvoiceDetailResponse])
async def update_invoice_due_date(
    invoice_id: int,
    data: DueDateUpdate,
    db: AsyncSession = Depends(get_db),
):
    service = InvoiceService(db)
    invoice = await service.update_due_date(invoice_id, data.due_date, data.updated_by_id)
    return ApiResponse(success=True, data=InvoiceDetailResponse.model_validate(invoice))


@router.post(
    "/items/{invoice_item_id}/waiver",
    response_model=ApiResponse[InvoiceItemResponse],
)
async def apply_waiver(
    invoice_item_id: int,
    data: WaiverCreate,
    db: AsyncSession = Depends(get_db),
):
    """Waive part of an invoice item's balance."""
    service = InvoiceService(db)
    item = await service.apply_waiver(invoice_item_id, data)
    return ApiResponse(
        success=True,
        message="Waiver applied",
        data=InvoiceItemResponse.model_validate(item),
    )


@router.post(
    "/items/{invoice_item_id}/waiver/revoke",
    response_model=ApiResponse[InvoiceItemResponse],
)
async def revoke_waiver(
    invoice_item_id: int,
    data: WaiverRevoke,
    db: AsyncSession = Depends(get_db),
):
    service = InvoiceService(db)
    item = await service.revoke_waiver(invoice_item_id, data)
    return ApiResponse(
        success=True,
        message="Waiver revoked",
        data=InvoiceItemResponse.model_validate(item),
    )


@router.get("/items/{invoice_item_id}", response_model=ApiResponse[InvoiceItemResponse])
async def get_invoice_item(
    invoice_item_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = InvoiceService(db)
    item = await service.get_invoice_item(invoice_item_id)
    return ApiResponse(success=True, data=InvoiceItemResponse.model_validate(item))

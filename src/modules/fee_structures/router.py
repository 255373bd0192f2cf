"""API endpoints for Fee Structures module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.fee_structures.models import FeeStructureStatus, Term
from src.modules.fee_structures.schemas import (
    FeeStructureCopy,
    FeeStructureCreate,
    FeeStructureFilters,
    FeeStructureItemUpdate,
    FeeStructureResponse,
)
from src.modules.fee_structures.service import FeeStructureService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/fee-structures", tags=["Fee Structures"])


@router.post(
    "",
    response_model=ApiResponse[FeeStructureResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    data: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a fee structure for a class, academic year and term."""
    service = FeeStructureService(db)
    fee_structure = await service.create_fee_structure(data)
    return ApiResponse(
        success=True,
        message="Fee structure created successfully",
        data=FeeStructureResponse.model_validate(fee_structure),
    )


@router.get("", response_model=ApiResponse[list[FeeStructureResponse]])
async def list_fee_structures(
    class_name: str | None = Query(None),
    academic_year: str | None = Query(None),
    term: Term | None = Query(None),
    status: FeeStructureStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    service = FeeStructureService(db)
    filters = FeeStructureFilters(
        class_name=class_name, academic_year=academic_year, term=term, status=status
    )
    fee_structures = await service.list_fee_structures(filters)
    return ApiResponse(
        success=True,
        data=[FeeStructureResponse.model_validate(fs) for fs in fee_structures],
    )


@router.get("/by-class", response_model=ApiResponse[FeeStructureResponse])
async def get_fee_structure_by_class(
    class_name: str = Query(..., min_length=1),
    academic_year: str = Query(...),
    term: Term = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Active fee structure of a class for one term."""
    service = FeeStructureService(db)
    fee_structure = await service.get_fee_structure_by_class(class_name, academic_year, term)
    return ApiResponse(success=True, data=FeeStructureResponse.model_validate(fee_structure))


@router.get("/{fee_structure_id}", response_model=ApiResponse[FeeStructureResponse])
async def get_fee_structure(
    fee_structure_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = FeeStructureService(db)
    fee_structure = await service.get_fee_structure(fee_structure_id)
    return ApiResponse(success=True, data=FeeStructureResponse.model_validate(fee_structure))


@router.patch(
    "/items/{fee_structure_item_id}",
    response_model=ApiResponse[FeeStructureResponse],
)
async def update_fee_structure_item(
    fee_structure_item_id: int,
    data: FeeStructureItemUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Change the price of a fee line. Issued invoices are not affected."""
    service = FeeStructureService(db)
    fee_structure = await service.update_item_amount(
        fee_structure_item_id, data.amount, data.updated_by_id
    )
    return ApiResponse(
        success=True,
        message="Fee structure item updated",
        data=FeeStructureResponse.model_validate(fee_structure),
    )


@router.post(
    "/{fee_structure_id}/copy",
    response_model=ApiResponse[FeeStructureResponse],
    status_code=status.HTTP_201_CREATED,
)
async def copy_fee_structure(
    fee_structure_id: int,
    data: FeeStructureCopy,
    db: AsyncSession = Depends(get_db),
):
    """Copy the active items of a fee structure into a new class, year or term."""
    service = FeeStructureService(db)
    fee_structure = await service.copy_fee_structure(fee_structure_id, data)
    return ApiResponse(
        success=True,
        message="Fee structure copied",
        data=FeeStructureResponse.model_validate(fee_structure),
    )


@router.delete("/{fee_structure_id}", response_model=ApiResponse[None])
async def delete_fee_structure(
    fee_structure_id: int,
    deleted_by_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Delete a fee structure that has no invoices."""
    service = FeeStructureService(db)
    await service.delete_fee_structure(fee_structure_id, deleted_by_id)
    return ApiResponse(success=True, message="Fee structure deleted", data=None)

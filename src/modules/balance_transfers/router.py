"""API endpoints for balance carry-forward transfers."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.balance_transfers.schemas import (
    CarryForwardRequest,
    FeeBalanceTransferResponse,
)
from src.modules.balance_transfers.service import BalanceTransferService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/balance-transfers", tags=["Balance Transfers"])


@router.post(
    "",
    response_model=ApiResponse[FeeBalanceTransferResponse],
    status_code=status.HTTP_201_CREATED,
)
async def carry_forward_balances(
    data: CarryForwardRequest,
    db: AsyncSession = Depends(get_db),
):
    """Carry a student's unpaid balances from one term/class to another."""
    service = BalanceTransferService(db)
    transfer = await service.carry_forward_balances(
        data.student_id,
        data.from_scope,
        data.to_scope,
        data.transferred_by_id,
        due_date=data.due_date,
    )
    return ApiResponse(
        success=True,
        message="Balances carried forward",
        data=FeeBalanceTransferResponse.model_validate(transfer),
    )


@router.get("", response_model=ApiResponse[list[FeeBalanceTransferResponse]])
async def list_transfers(
    student_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    service = BalanceTransferService(db)
    transfers = await service.list_transfers(student_id)
    return ApiResponse(
        success=True,
        data=[FeeBalanceTransferResponse.model_validate(t) for t in transfers],
    )


@router.get("/{transfer_id}", response_model=ApiResponse[FeeBalanceTransferResponse])
async def get_transfer(
    transfer_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = BalanceTransferService(db)
    transfer = await service.get_transfer(transfer_id)
    return ApiResponse(success=True, data=FeeBalanceTransferResponse.model_validate(transfer))

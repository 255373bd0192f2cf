"""API endpoints for student promotions."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.promotions.schemas import PromotionCreate, StudentPromotionResponse
from src.modules.promotions.service import PromotionService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/promotions", tags=["Promotions"])


@router.post(
    "",
    response_model=ApiResponse[StudentPromotionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def promote_student(
    data: PromotionCreate,
    db: AsyncSession = Depends(get_db),
):
    """Promote a student and carry outstanding balances into the new class."""
    service = PromotionService(db)
    promotion = await service.promote_student(data)
    return ApiResponse(
        success=True,
        message="Student promoted",
        data=StudentPromotionResponse.model_validate(promotion),
    )


@router.get(
    "/students/{student_id}",
    response_model=ApiResponse[list[StudentPromotionResponse]],
)
async def get_promotion_history(
    student_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = PromotionService(db)
    promotions = await service.get_promotion_history(student_id)
    return ApiResponse(
        success=True,
        data=[StudentPromotionResponse.model_validate(p) for p in promotions],
    )


@router.get("/{promotion_id}", response_model=ApiResponse[StudentPromotionResponse])
async def get_promotion(
    promotion_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = PromotionService(db)
    promotion = await service.get_promotion(promotion_id)
    return ApiResponse(success=True, data=StudentPromotionResponse.model_validate(promotion))

"""VARA-AI free-text recommendation endpoint."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_recommendation_service
from app.core.errors import QuotaExceeded
from app.models.user import User
from app.schema.recommendation import RecommendationResponse, RecommendRequest
from app.services.recommendation_service import RecommendationService

router = APIRouter()


@router.post(
    "/recommend",
    response_model=RecommendationResponse,
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"description": "Monthly AI query limit reached"}},
)
async def recommend(
    payload: RecommendRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Turn a creative brief into ranked, explained song recommendations."""
    if not payload.query_text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="query_text is required")
    try:
        return await service.recommend(
            session,
            current_user,
            payload.query_text,
            vocals=payload.vocals,
            top_k=payload.top_k,
        )
    except QuotaExceeded as exc:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": "AI_LIMIT_REACHED", "detail": str(exc), **exc.usage.to_dict()},
        )

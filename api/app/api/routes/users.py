"""User endpoints for taste tracking and taste-based recommendations."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_recommendation_service
from app.core.errors import PersistenceError, ValidationError
from app.models.user import User
from app.schema.recommendation import TasteRecommendationResponse
from app.schema.taste_profile import TasteInteractionCreate, TasteInteractionResult, TasteProfileRead
from app.schema.user import UserRead
from app.services import taste_profile_service, usage_service
from app.services.recommendation_service import RecommendationService

router = APIRouter()


@router.get("/me", response_model=UserRead)
async def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    """Return the current authenticated user."""
    return current_user


@router.get("/me/ai-usage")
async def read_ai_usage(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    """Return this month's AI query usage against the user's plan."""
    usage = await usage_service.get_usage(session, current_user)
    return usage.to_dict()


@router.post("/me/taste-interactions", response_model=TasteInteractionResult)
async def record_taste_interaction(
    payload: TasteInteractionCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> TasteInteractionResult:
    """Apply one listening interaction to the current user's taste profile."""
    try:
        profile = await taste_profile_service.record_interaction(
            session,
            current_user.id,
            payload.interaction_type,
            genres=[tag.model_dump() for tag in payload.genres],
            sub_genres=[tag.model_dump() for tag in payload.sub_genres],
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return TasteInteractionResult(total_interactions=profile.total_interactions)


@router.get("/me/taste-profile", response_model=TasteProfileRead)
async def read_taste_profile(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    limit: int = Query(5, ge=1, le=50),
) -> TasteProfileRead:
    try:
        summary = await taste_profile_service.get_taste_profile(session, current_user.id, limit=limit)
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return TasteProfileRead(**summary)


@router.get("/me/recommendations", response_model=TasteRecommendationResponse)
async def read_taste_recommendations(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service),
    top_k: int = Query(10, ge=1, le=20),
) -> TasteRecommendationResponse:
    """Recommend from the user's taste profile once enough interactions exist."""
    try:
        return await service.recommend_from_taste(session, current_user, top_k=top_k)
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

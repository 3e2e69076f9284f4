"""
Share groups router: GET /v1/share-groups/{id}
"""
from fastapi import APIRouter, Depends

from app.middleware.auth import get_current_user
from app.schemas.schemas import ShareGroupResponse, ShareParticipantResponse
from app.services.engine import CoordinationEngine, get_engine

router = APIRouter(prefix="/v1/share-groups", tags=["Share"])


@router.get("/{group_id}", response_model=ShareGroupResponse)
async def get_share_group(
    group_id: str,
    engine: CoordinationEngine = Depends(get_engine),
    _user: dict = Depends(get_current_user),
):
    group, participants = await engine.shares.get_group(group_id)
    return ShareGroupResponse(
        id=group.id,
        status=group.status,
        capacity=group.capacity,
        ride_id=group.ride_id,
        created_at=group.created_at,
        participants=[ShareParticipantResponse.model_validate(p) for p in participants],
    )

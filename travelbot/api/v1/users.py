from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from travelbot.core.deps import get_preference_service
from travelbot.schemas.preferences import (
    InteractionRequest,
    InteractionResponse,
    NormalizedPreferences,
)
from travelbot.services.preference_tracker import PreferenceService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["preferences"])


@router.post("/{user_id}/interactions", response_model=InteractionResponse, status_code=202)
async def track_interaction(
    user_id: int,
    payload: InteractionRequest,
    preferences: PreferenceService = Depends(get_preference_service),
):
    tracked = await preferences.track_interaction(
        user_id, payload.interaction_type, payload.payload
    )
    return InteractionResponse(
        user_id=user_id,
        interaction_type=payload.interaction_type,
        tracked=tracked,
    )


@router.get("/{user_id}/preferences", response_model=NormalizedPreferences)
async def get_preferences(
    user_id: int,
    preferences: PreferenceService = Depends(get_preference_service),
):
    result = await preferences.preferences(user_id)
    if result is None:
        raise HTTPException(status_code=503, detail="Preferences are temporarily unavailable")
    return result

"""
Learned travel preferences.

A PreferenceProfile is a plain value: read it, pass it through
track_from_query(), track_interaction() or track_from_results()
to get a new profile, write it back.
Raw weights only ever grow; normalized_preferences() turns them into a
self-scaling read view:

  1. stepped decay: an entry untouched for PREFERENCE_DECAY_DAYS keeps half
     its weight, for twice that a quarter, and so on (0.5 ** full periods)
  2. divide by the map's largest decayed weight, so the strongest is 1.0
  3. drop anything under PREFERENCE_CONFIDENCE_THRESHOLD

Storage is best-effort and last-write-wins across processes; within one
process writes for the same user are serialised by a per-user lock that
is discarded once nobody holds or waits on it.
"""
from __future__ import annotations

import asyncio
import logging
import statistics
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterable, Optional, Sequence

from sqlalchemy import select

from travelbot.core.config import settings
from travelbot.db.session import async_session_maker
from travelbot.models.preference_profile import PreferenceProfileRecord
from travelbot.schemas.preferences import (
    PREFERENCE_MAPS,
    BudgetSample,
    BudgetSummary,
    InteractionPayload,
    InteractionType,
    NormalizedPreferences,
    PreferenceProfile,
    WeightEntry,
)
from travelbot.schemas.query import QueryAnalysis

logger = logging.getLogger(__name__)

QUERY_WEIGHT = 1.0
INTERACTION_WEIGHTS = {
    InteractionType.booking_intent: 3.0,
    InteractionType.destination_view: 2.0,
    InteractionType.property_view: 1.5,
    InteractionType.amenity_interest: 1.0,
}
DECAY_FACTOR = 0.5

# Returned results are a weak, implicit signal
RESULT_WEIGHT = 0.5
RESULT_DESTINATIONS_TRACKED = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _bump(
    weights: Dict[str, WeightEntry],
    keys: Iterable[Optional[str]],
    increment: float,
    now: datetime,
) -> None:
    for key in keys:
        if key is None:
            continue
        tag = str(key).strip().lower()
        if not tag:
            continue
        current = weights.get(tag)
        previous = current.weight if current else 0.0
        weights[tag] = WeightEntry(weight=previous + increment, updated_at=now)


def _record_budget(
    profile: PreferenceProfile,
    amount: Optional[float],
    currency: Optional[str],
    now: datetime,
    history_size: int,
) -> None:
    if amount is None or amount <= 0:
        return
    profile.budget_history.append(
        BudgetSample(amount=amount, currency=currency or settings.DEFAULT_CURRENCY, recorded_at=now)
    )
    del profile.budget_history[:-history_size]


# ── Write side ────────────────────────────────────────────────────────────────

def track_from_query(
    profile: PreferenceProfile,
    analysis: QueryAnalysis,
    *,
    now: Optional[datetime] = None,
    history_size: Optional[int] = None,
) -> PreferenceProfile:
    """Return a new profile with the query's explicit facets added."""
    now = now or _now()
    updated = profile.model_copy(deep=True)
    prefs = analysis.destination_preferences

    _bump(updated.destination_types, prefs.destination_type, QUERY_WEIGHT, now)
    _bump(updated.climates, prefs.climate, QUERY_WEIGHT, now)
    _bump(updated.activities, analysis.activity_preferences, QUERY_WEIGHT, now)
    _bump(updated.amenities, analysis.amenity_requirements, QUERY_WEIGHT, now)
    _bump(updated.traveler_types, analysis.traveler_info.traveler_types[:1], QUERY_WEIGHT, now)
    _record_budget(
        updated,
        analysis.budget.max_per_day,
        analysis.budget.currency,
        now,
        history_size or settings.BUDGET_HISTORY_SIZE,
    )
    updated.updated_at = now
    return updated


def track_from_results(
    profile: PreferenceProfile,
    destinations: Sequence,
    *,
    now: Optional[datetime] = None,
    top_n: int = RESULT_DESTINATIONS_TRACKED,
) -> PreferenceProfile:
    """Return a new profile with an implicit bump for the countries of the top returned destinations."""
    now = now or _now()
    updated = profile.model_copy(deep=True)
    countries = [getattr(d, "country", None) for d in destinations[:top_n]]
    _bump(updated.countries, countries, RESULT_WEIGHT, now)
    updated.updated_at = now
    return updated


def track_interaction(
    profile: PreferenceProfile,
    interaction_type: InteractionType | str,
    payload: Optional[InteractionPayload] = None,
    *,
    now: Optional[datetime] = None,
    history_size: Optional[int] = None,
) -> PreferenceProfile:
    """Return a new profile with one interaction event applied."""
    interaction_type = InteractionType(interaction_type)
    payload = payload or InteractionPayload()
    now = now or _now()
    weight = INTERACTION_WEIGHTS[interaction_type]
    updated = profile.model_copy(deep=True)

    if interaction_type is InteractionType.destination_view:
        _bump(updated.destination_types, payload.tags, weight, now)
        _bump(updated.climates, payload.climate, weight, now)
    elif interaction_type is InteractionType.property_view:
        _bump(updated.property_categories, [payload.category], weight, now)
        if payload.star_rating:
            _bump(updated.star_ratings, [str(payload.star_rating)], weight, now)
    elif interaction_type is InteractionType.amenity_interest:
        _bump(updated.amenities, [payload.amenity], weight, now)
    elif interaction_type is InteractionType.booking_intent:
        _bump(updated.destination_types, [payload.destination_type, *payload.tags], weight, now)
        _record_budget(
            updated,
            payload.budget_per_day,
            payload.currency,
            now,
            history_size or settings.BUDGET_HISTORY_SIZE,
        )

    updated.updated_at = now
    return updated


# ── Read side ─────────────────────────────────────────────────────────────────

def decay_multiplier(updated_at: datetime, now: datetime, decay_days: int) -> float:
    updated_at = _as_utc(updated_at)
    now = _as_utc(now)
    age_days = (now - updated_at).days
    if age_days <= decay_days:
        return 1.0
    return DECAY_FACTOR ** (age_days // decay_days)


def normalize_weights(
    weights: Dict[str, WeightEntry],
    *,
    now: datetime,
    threshold: float,
    decay_days: int,
) -> Dict[str, float]:
    decayed = {
        tag: entry.weight * decay_multiplier(entry.updated_at, now, decay_days)
        for tag, entry in weights.items()
    }
    peak = max(decayed.values(), default=0.0)
    if peak <= 0:
        return {}
    scaled = {tag: value / peak for tag, value in decayed.items()}
    kept = [(tag, value) for tag, value in scaled.items() if value >= threshold]
    kept.sort(key=lambda item: (-item[1], item[0]))
    return dict(kept)


def summarize_budget(profile: PreferenceProfile) -> BudgetSummary:
    amounts = [sample.amount for sample in profile.budget_history]
    if not amounts:
        return BudgetSummary()
    return BudgetSummary(
        min=min(amounts),
        max=max(amounts),
        median=statistics.median(amounts),
        mean=statistics.fmean(amounts),
        currency=profile.budget_history[-1].currency,
    )


def normalized_preferences(
    profile: PreferenceProfile,
    *,
    now: Optional[datetime] = None,
    threshold: Optional[float] = None,
    decay_days: Optional[int] = None,
) -> NormalizedPreferences:
    now = now or _now()
    threshold = settings.PREFERENCE_CONFIDENCE_THRESHOLD if threshold is None else threshold
    decay_days = decay_days or settings.PREFERENCE_DECAY_DAYS
    maps = {
        name: normalize_weights(
            getattr(profile, name), now=now, threshold=threshold, decay_days=decay_days
        )
        for name in PREFERENCE_MAPS
    }
    return NormalizedPreferences(**maps, budget=summarize_budget(profile))


# ── Storage ───────────────────────────────────────────────────────────────────

class PreferenceStore:
    """Postgres-backed profile storage, one JSONB document per user."""

    def __init__(self, session_maker=async_session_maker):
        self._session_maker = session_maker

    async def load(self, user_id: int) -> PreferenceProfile:
        async with self._session_maker() as session:
            record = await session.get(PreferenceProfileRecord, user_id)
        if record is None:
            return PreferenceProfile(user_id=user_id)
        profile = PreferenceProfile.model_validate(record.data)
        profile.user_id = user_id
        return profile

    async def save(self, profile: PreferenceProfile) -> None:
        if profile.user_id is None:
            raise ValueError("Cannot save a preference profile without user_id")
        data = profile.model_dump(mode="json")
        async with self._session_maker() as session:
            record = await session.get(PreferenceProfileRecord, profile.user_id)
            if record is None:
                session.add(PreferenceProfileRecord(user_id=profile.user_id, data=data))
            else:
                record.data = data
            await session.commit()


class InMemoryPreferenceStore:
    def __init__(self) -> None:
        self.profiles: Dict[int, PreferenceProfile] = {}

    async def load(self, user_id: int) -> PreferenceProfile:
        profile = self.profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else PreferenceProfile(user_id=user_id)

    async def save(self, profile: PreferenceProfile) -> None:
        self.profiles[profile.user_id] = profile.model_copy(deep=True)


class PreferenceService:
    """
    Read-modify-write wrapper around a store.
    Tracking never raises; reading degrades to "no preferences".
    """

    def __init__(self, store=None):
        self.store = store or PreferenceStore()
        # user_id -> (lock, holders and waiters); dropped when the count reaches zero
        self._locks: Dict[int, list] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: int) -> AsyncIterator[None]:
        slot = self._locks.setdefault(user_id, [asyncio.Lock(), 0])
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[user_id]

    async def _update(self, user_id: int, transform) -> bool:
        try:
            async with self._user_lock(user_id):
                profile = await self.store.load(user_id)
                await self.store.save(transform(profile))
            return True
        except Exception as exc:
            logger.warning("Preference tracking failed for user_id=%d: %s", user_id, exc)
            return False

    async def track_query(self, user_id: int, analysis: QueryAnalysis) -> bool:
        return await self._update(user_id, lambda p: track_from_query(p, analysis))

    async def track_results(self, user_id: int, destinations: Sequence) -> bool:
        return await self._update(user_id, lambda p: track_from_results(p, destinations))

    async def track_interaction(
        self,
        user_id: int,
        interaction_type: InteractionType,
        payload: Optional[InteractionPayload] = None,
    ) -> bool:
        return await self._update(
            user_id, lambda p: track_interaction(p, interaction_type, payload)
        )

    async def preferences(self, user_id: int) -> Optional[NormalizedPreferences]:
        try:
            profile = await self.store.load(user_id)
        except Exception as exc:
            logger.warning("Could not load preferences for user_id=%d: %s", user_id, exc)
            return None
        return normalized_preferences(profile)

"""
Recommendation Tracker - In-memory state with debounced persistence

The tracker owns each user's working copy of their recommendations and
bookmark collections. Routes mutate that copy through progress_service and
the tracker writes it back to Firestore:

- state is loaded lazily from the user document on first access
- mutations schedule a debounced save (SAVE_DEBOUNCE_SECONDS), so a burst
  of checkpoint toggles becomes one write
- saves for one user never overlap (per-user asyncio.Lock) and always send
  the full current list (last write wins)
- replace_recommendations() and force_save() write immediately

When Firestore is unavailable the in-memory copy stays authoritative; the
next successful save carries the latest data. A "degraded" save (summary
only, in fallback mode) leaves the state dirty and schedules a full save,
immediately or once the error monitor leaves fallback mode.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from sinak.config import settings
from sinak.db.client import get_firestore_client
from sinak.schemas.recommendations import BookmarkCollection, Recommendation, new_id
from sinak.services import progress_service
from sinak.services.firestore_errors import error_monitor, handle_firestore_error
from sinak.services.firestore_service import (
    WriteOutcome,
    fallback_writes_active,
    load_recommendation_data,
    update_recommendation_data,
)
from sinak.utils.constants import DEFAULT_BOOKMARK_COLLECTION, DEFAULT_BOOKMARK_COLLECTIONS
from sinak.utils.debounce import Debouncer

logger = logging.getLogger(__name__)

Mutation = Callable[[Recommendation], Recommendation]

# Full saves retried right after a degraded (summary-only) write before
# waiting for the next mutation or for the error monitor to recover
MAX_DEGRADED_RESAVES = 3


class BookmarkCollectionError(ValueError):
    """The bookmark collection operation is not allowed."""


class BookmarkCollectionNotFoundError(BookmarkCollectionError, LookupError):
    """No bookmark collection with the given id."""


def default_bookmark_collections() -> List[BookmarkCollection]:
    return [
        BookmarkCollection(id=collection_id, **info)
        for collection_id, info in DEFAULT_BOOKMARK_COLLECTIONS.items()
    ]


@dataclass
class UserTrackingState:
    uid: str
    recommendations: List[Recommendation] = field(default_factory=list)
    bookmark_collections: List[BookmarkCollection] = field(default_factory=default_bookmark_collections)
    loaded: bool = False
    dirty: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    saver: Optional[Debouncer] = None
    last_save: Optional[WriteOutcome] = None
    degraded_saves: int = 0


def _parse_recommendations(uid: str, raw_items: List[dict]) -> List[Recommendation]:
    recommendations = []
    for raw in raw_items:
        try:
            recommendations.append(Recommendation.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping stored recommendation that failed validation for uid={uid}: {e}")
    return recommendations


def _merge_collections(raw_items: List[dict]) -> List[BookmarkCollection]:
    collections = {collection.id: collection for collection in default_bookmark_collections()}
    for raw in raw_items:
        try:
            collection = BookmarkCollection.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Skipping stored bookmark collection that failed validation: {e}")
            continue
        collections[collection.id] = collection
    return list(collections.values())


class RecommendationTracker:
    """
    Per-user recommendation state with debounced Firestore saves.

    Args:
        client_factory: Returns the Firestore client
        debounce_seconds: Quiet period before a scheduled save runs
    """

    def __init__(
        self,
        client_factory: Callable[[], object] = get_firestore_client,
        debounce_seconds: Optional[float] = None,
    ):
        self._client_factory = client_factory
        self.debounce_seconds = (
            settings.SAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self._states: Dict[str, UserTrackingState] = {}
        self._awaiting_recovery: Set[str] = set()

    # =========================================================
    # State
    # =========================================================

    async def get_state(self, uid: str) -> UserTrackingState:
        """Return the user's state, loading it from Firestore when needed."""
        state = self._states.get(uid)
        if state is None:
            state = UserTrackingState(uid=uid)
            state.saver = Debouncer(self.save, self.debounce_seconds)
            self._states[uid] = state

        # Never reload over unsaved local changes
        if not state.loaded and not state.dirty:
            await self._load(state)
        return state

    async def _load(self, state: UserTrackingState) -> None:
        if settings.FIRESTORE_DISABLED:
            state.loaded = True
            return

        try:
            client = self._client_factory()
        except Exception as e:
            error_monitor.record_error(e)
            handle_firestore_error(e, "load_recommendation_data")
            return

        data = await load_recommendation_data(client, state.uid)
        if data is None:
            logger.info(f"No stored recommendation data for uid={state.uid}")
            return

        state.recommendations = _parse_recommendations(state.uid, data["recommendations"])
        state.bookmark_collections = _merge_collections(data["bookmark_collections"])
        state.loaded = True
        logger.info(f"Loaded {len(state.recommendations)} recommendations for uid={state.uid}")

    def forget(self, uid: str) -> None:
        """Drop cached state (e.g. on sign-out); pending saves are cancelled."""
        state = self._states.pop(uid, None)
        if state is not None and state.saver is not None:
            state.saver.cancel()

    # =========================================================
    # Persistence
    # =========================================================

    async def save(self, uid: str) -> WriteOutcome:
        """Write the user's full recommendation list and bookmark collections now."""
        state = self._states.get(uid)
        if state is None:
            return WriteOutcome("skipped", "Tidak ada perubahan")

        async with state.lock:
            recommendations = list(state.recommendations)
            extra = {
                "bookmark_collections": [
                    collection.model_dump(mode="json") for collection in state.bookmark_collections
                ],
            }

            if settings.FIRESTORE_DISABLED:
                outcome = WriteOutcome("skipped", "Firestore dinonaktifkan")
            else:
                try:
                    client = self._client_factory()
                except Exception as e:
                    kind = error_monitor.record_error(e)
                    outcome = WriteOutcome(
                        "failed", handle_firestore_error(e, "update_recommendation_data"), error_kind=kind
                    )
                else:
                    outcome = await update_recommendation_data(client, uid, recommendations, extra=extra)

            state.last_save = outcome
            if outcome.persisted:
                state.dirty = False
                state.degraded_saves = 0
            logger.info(f"Saved {len(recommendations)} recommendations for uid={uid}: {outcome.status}")

        if outcome.status == "degraded":
            await self._retry_full_save(state)
        return outcome

    async def _retry_full_save(self, state: UserTrackingState) -> None:
        """
        Follow a summary-only write with a full one.

        While fallback writes are still active the save waits for the error
        monitor to recover; otherwise it is rescheduled on the debouncer a
        bounded number of times.
        """
        state.degraded_saves += 1
        if fallback_writes_active():
            logger.warning(f"Fallback writes active, full save for uid={state.uid} waits for recovery")
            if not self._awaiting_recovery:
                error_monitor.add_recovery_listener(self._on_fallback_recovered)
            self._awaiting_recovery.add(state.uid)
            return

        if state.degraded_saves > MAX_DEGRADED_RESAVES:
            logger.error(
                f"Full save for uid={state.uid} degraded {state.degraded_saves} times, "
                "waiting for the next change"
            )
            return

        logger.info(f"Rescheduling full save for uid={state.uid}")
        await state.saver(state.uid)

    def _on_fallback_recovered(self) -> None:
        error_monitor.remove_recovery_listener(self._on_fallback_recovered)
        uids, self._awaiting_recovery = self._awaiting_recovery, set()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, {len(uids)} full saves wait for the next change")
            return

        for uid in uids:
            state = self._states.get(uid)
            if state is not None and state.dirty:
                state.degraded_saves = 0
                logger.info(f"Firestore recovered, scheduling full save for uid={uid}")
                loop.create_task(state.saver(uid))

    async def schedule_save(self, uid: str) -> None:
        state = await self.get_state(uid)
        state.dirty = True
        await state.saver(uid)

    async def force_save(self, uid: str) -> WriteOutcome:
        """Run a pending debounced save immediately, or save now if none is pending."""
        state = self._states.get(uid)
        if state is not None and state.saver.pending:
            return await state.saver.flush()
        return await self.save(uid)

    async def flush_all(self) -> None:
        """Flush every pending save; used on shutdown."""
        for uid, state in list(self._states.items()):
            if state.saver is not None and state.saver.pending:
                logger.info(f"Flushing pending save for uid={uid}")
                await state.saver.flush()

    # =========================================================
    # Recommendations
    # =========================================================

    async def list_recommendations(self, uid: str) -> List[Recommendation]:
        state = await self.get_state(uid)
        return list(state.recommendations)

    async def replace_recommendations(self, uid: str, recommendations: List[Recommendation]) -> WriteOutcome:
        """Replace the whole list (after generation) and save immediately."""
        state = await self.get_state(uid)
        state.saver.cancel()
        state.recommendations = list(recommendations)
        state.dirty = True
        return await self.save(uid)

    async def get_recommendation(self, uid: str, recommendation_id: str, count_view: bool = True) -> Recommendation:
        """
        Fetch one recommendation, counting the view.

        Raises:
            RecommendationNotFoundError: If the id is unknown for this user
        """
        state = await self.get_state(uid)
        recommendation = progress_service.find_recommendation(state.recommendations, recommendation_id)
        if count_view:
            progress_service.record_view(recommendation)
            await self.schedule_save(uid)
        return recommendation

    async def mutate(self, uid: str, recommendation_id: str, mutation: Mutation) -> Recommendation:
        """
        Apply a progress_service mutation and schedule a save.

        Errors raised by the mutation propagate and nothing is saved.
        """
        state = await self.get_state(uid)
        recommendation = progress_service.find_recommendation(state.recommendations, recommendation_id)
        mutation(recommendation)
        await self.schedule_save(uid)
        return recommendation

    # =========================================================
    # Bookmark collections
    # =========================================================

    async def list_collections(self, uid: str) -> List[BookmarkCollection]:
        state = await self.get_state(uid)
        return list(state.bookmark_collections)

    async def get_collection(self, uid: str, collection_id: str) -> BookmarkCollection:
        state = await self.get_state(uid)
        for collection in state.bookmark_collections:
            if collection.id == collection_id:
                return collection
        raise BookmarkCollectionNotFoundError(f"Bookmark collection {collection_id} not found")

    async def create_collection(self, uid: str, name: str, description: str = "") -> BookmarkCollection:
        state = await self.get_state(uid)
        name = name.strip()
        if not name:
            raise BookmarkCollectionError("Nama koleksi tidak boleh kosong")
        if any(c.name.lower() == name.lower() for c in state.bookmark_collections):
            raise BookmarkCollectionError(f'Koleksi "{name}" sudah ada')

        collection = BookmarkCollection(id=f"collection_{new_id()[:12]}", name=name, description=description)
        state.bookmark_collections.append(collection)
        logger.info(f"Bookmark collection created for uid={uid}: {collection.id}")
        await self.schedule_save(uid)
        return collection

    async def delete_collection(self, uid: str, collection_id: str) -> int:
        """
        Delete a collection; its bookmarks move to the default collection.

        Returns:
            Number of recommendations moved

        Raises:
            BookmarkCollectionError: For the default collection
            BookmarkCollectionNotFoundError: For an unknown id
        """
        if collection_id == DEFAULT_BOOKMARK_COLLECTION:
            raise BookmarkCollectionError("Koleksi default tidak dapat dihapus")

        state = await self.get_state(uid)
        await self.get_collection(uid, collection_id)

        default = await self.get_collection(uid, DEFAULT_BOOKMARK_COLLECTION)
        moved = 0
        for recommendation in state.recommendations:
            if recommendation.is_bookmarked and recommendation.bookmark_collection == collection_id:
                progress_service.add_to_bookmark_collection(recommendation, default.id, default.name)
                moved += 1

        state.bookmark_collections = [c for c in state.bookmark_collections if c.id != collection_id]
        logger.info(f"Bookmark collection {collection_id} deleted for uid={uid}, moved {moved} bookmarks")
        await self.schedule_save(uid)
        return moved


_tracker: Optional[RecommendationTracker] = None


def get_tracker() -> RecommendationTracker:
    """FastAPI dependency returning the process-wide tracker."""
    global _tracker
    if _tracker is None:
        _tracker = RecommendationTracker()
    return _tracker

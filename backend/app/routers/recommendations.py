from typing import List, Optional
import uuid as uuid_lib
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import RecommendationRecord
from app.schemas.recommendation import (
    AcceptRequest,
    BlockedCandidateOut,
    BlockRequest,
    DeclineRequest,
    GenerateRecommendationsRequest,
    RecommendationRecordOut,
    RecommendationsResponse,
    RecommendationStats,
)
from app.services.recommendation_pipeline import RecommendationPipeline, build_default_pipeline, to_item
from app.services.recommendation_store import (
    InvalidTransitionError,
    RecommendationStore,
    RecordNotFoundError,
)
from app.utils.instrumentation import log_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def get_pipeline(request: Request) -> RecommendationPipeline:
    """The app-wide pipeline, created on startup (or lazily on first use)."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_default_pipeline()
        request.app.state.pipeline = pipeline
    return pipeline


def get_store(db: Session = Depends(get_db)) -> RecommendationStore:
    return RecommendationStore(db)


def _status_changed(db: Session, record: RecommendationRecord) -> RecommendationRecordOut:
    log_event(
        db,
        "recommendation_status_changed",
        user_id=record.user_id,
        properties={"candidate_id": record.candidate_id, "status": record.status.value},
    )
    return RecommendationRecordOut.model_validate(record)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


@router.post("/{user_id}/generate", response_model=RecommendationsResponse)
async def generate_recommendations(
    user_id: str,
    payload: GenerateRecommendationsRequest,
    debug: bool = Query(False, description="Include debug fields in response"),
    pipeline: RecommendationPipeline = Depends(get_pipeline),
    db: Session = Depends(get_db),
):
    if payload.profile.id != user_id:
        raise HTTPException(status_code=400, detail="profile.id does not match the user in the path")

    request_id = str(uuid_lib.uuid4())
    logger.info("Generating recommendations for user %s (request_id=%s)", user_id, request_id)

    result = await pipeline.generate(db, payload, request_id=request_id)
    return RecommendationsResponse(
        request_id=result.request_id,
        items=[to_item(scored, debug=debug) for scored in result.items],
        persisted=result.persisted,
        debug=result.debug_info() if debug else None,
    )


@router.get("/{user_id}", response_model=List[RecommendationRecordOut])
def load_recommendations(
    user_id: str,
    refresh: bool = Query(False, description="Decline everything pending before loading"),
    limit: int = Query(10, ge=1, le=50),
    tier: Optional[str] = Query(None, description="Subscription tier (free, plus, premium)"),
    store: RecommendationStore = Depends(get_store),
):
    if refresh:
        store.clear_pending(user_id)
    records = store.load(user_id, limit=limit, subscription_tier=tier)
    return [RecommendationRecordOut.model_validate(record) for record in records]


@router.post("/{user_id}/clear")
def clear_pending(user_id: str, store: RecommendationStore = Depends(get_store)):
    return {"cleared": store.clear_pending(user_id)}


@router.get("/{user_id}/stats", response_model=RecommendationStats)
def recommendation_stats(user_id: str, store: RecommendationStore = Depends(get_store)):
    return RecommendationStats(**store.stats(user_id))


@router.get("/{user_id}/blocked", response_model=List[BlockedCandidateOut])
def list_blocked(user_id: str, store: RecommendationStore = Depends(get_store)):
    return [BlockedCandidateOut.model_validate(blocked) for blocked in store.blocked(user_id)]


@router.post("/{user_id}/blocked", response_model=BlockedCandidateOut, status_code=201)
def block_candidate(
    user_id: str,
    payload: BlockRequest,
    store: RecommendationStore = Depends(get_store),
):
    blocked = store.block(user_id, payload.candidate_id, payload.candidate_name, payload.reason)
    return BlockedCandidateOut.model_validate(blocked)


@router.delete("/{user_id}/blocked/{candidate_id}")
def unblock_candidate(user_id: str, candidate_id: str, store: RecommendationStore = Depends(get_store)):
    if not store.unblock(user_id, candidate_id):
        raise HTTPException(status_code=404, detail="Candidate is not blocked")
    return {"status": "ok"}


@router.post("/{user_id}/{candidate_id}/viewed", response_model=RecommendationRecordOut)
def mark_viewed(user_id: str, candidate_id: str, store: RecommendationStore = Depends(get_store)):
    try:
        record = store.mark_viewed(user_id, candidate_id)
    except (RecordNotFoundError, InvalidTransitionError) as e:
        raise _http_error(e) from e
    return _status_changed(store.db, record)


@router.post("/{user_id}/{candidate_id}/accept", response_model=RecommendationRecordOut)
def mark_accepted(
    user_id: str,
    candidate_id: str,
    payload: AcceptRequest = AcceptRequest(),
    store: RecommendationStore = Depends(get_store),
):
    try:
        record = store.mark_accepted(user_id, candidate_id, payload.linked_entity_id)
    except (RecordNotFoundError, InvalidTransitionError) as e:
        raise _http_error(e) from e
    return _status_changed(store.db, record)


@router.post("/{user_id}/{candidate_id}/decline", response_model=RecommendationRecordOut)
def mark_declined(
    user_id: str,
    candidate_id: str,
    payload: DeclineRequest = DeclineRequest(),
    store: RecommendationStore = Depends(get_store),
):
    try:
        record = store.mark_declined(user_id, candidate_id, payload.reason)
    except (RecordNotFoundError, InvalidTransitionError) as e:
        raise _http_error(e) from e
    return _status_changed(store.db, record)


@router.post("/{user_id}/{candidate_id}/not-interested", response_model=RecommendationRecordOut)
def mark_not_interested(
    user_id: str,
    candidate_id: str,
    payload: DeclineRequest = DeclineRequest(),
    store: RecommendationStore = Depends(get_store),
):
    try:
        record = store.mark_not_interested(user_id, candidate_id, payload.reason)
    except (RecordNotFoundError, InvalidTransitionError) as e:
        raise _http_error(e) from e
    return _status_changed(store.db, record)

"""
People API endpoints.

Read access to the resolved person catalog. A removed (merged) id is never
served: it redirects to the surviving record, or 404s if it never existed.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from api.services.person_cache import get_person_cache
from api.services.person_lookup import find_persons_by_name
from api.services.person_store import get_person_store
from api.services.review_queue import get_review_queue_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/people", tags=["people"])


class PersonResponse(BaseModel):
    """Response model for a person."""
    id: int
    display_name: str
    aliases: list[str] = []
    category: str = "unknown"
    role: str = "unknown"
    description: Optional[str] = None
    document_count: int = 0
    connection_count: int = 0
    match_rule: Optional[str] = None  # Set on search results


class SearchResponse(BaseModel):
    """Response for search endpoint."""
    people: list[PersonResponse]
    count: int
    query: str


class ReviewItemResponse(BaseModel):
    """An ambiguous cluster awaiting review."""
    id: str
    member_ids: list[int]
    member_names: dict[str, str]
    missing_pairs: list[list[int]]
    reason: str
    status: str
    created_at: Optional[str] = None


class ReviewResponse(BaseModel):
    items: list[ReviewItemResponse]
    count: int


def _record_to_response(record, rule: Optional[str] = None) -> PersonResponse:
    return PersonResponse(
        id=record.id,
        display_name=record.display_name,
        aliases=record.aliases,
        category=record.category,
        role=record.role,
        description=record.description,
        document_count=record.document_count,
        connection_count=record.connection_count,
        match_rule=rule,
    )


@router.get("/search", response_model=SearchResponse)
async def search_people(
    q: str = Query(..., min_length=1, description="Person name, any order or spelling"),
    limit: int = Query(default=20, ge=1, le=200, description="Max results"),
):
    """Find people by name using the same matcher as deduplication."""
    hits = find_persons_by_name(q, get_person_cache(), limit=limit)
    return SearchResponse(
        people=[_record_to_response(h.record, h.rule) for h in hits],
        count=len(hits),
        query=q,
    )


@router.get("/review", response_model=ReviewResponse)
async def list_review_items(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """Pending ambiguous clusters, oldest first."""
    items = get_review_queue_store().get_pending(limit=limit, offset=offset)
    return ReviewResponse(
        items=[
            ReviewItemResponse(
                id=item.id,
                member_ids=item.member_ids,
                member_names={str(k): v for k, v in item.member_names.items()},
                missing_pairs=item.missing_pairs,
                reason=item.reason,
                status=item.status,
                created_at=item.created_at.isoformat() if item.created_at else None,
            )
            for item in items
        ],
        count=len(items),
    )


@router.get("/{person_id}", response_model=PersonResponse)
async def get_person(person_id: int):
    """Get a person by id, following merges to the surviving record."""
    store = get_person_store()
    record = store.get_by_id(person_id)
    if record is not None:
        return _record_to_response(record)

    canonical_id = store.get_canonical_id(person_id)
    if canonical_id != person_id and store.get_by_id(canonical_id) is not None:
        logger.debug(f"Redirecting merged person {person_id} -> {canonical_id}")
        return RedirectResponse(url=f"{router.prefix}/{canonical_id}", status_code=307)

    raise HTTPException(status_code=404, detail=f"Person {person_id} not found")

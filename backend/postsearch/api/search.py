"""REST endpoints for post search, suggestions, and feeds."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from postsearch.api.deps import get_query_service
from postsearch.index.exceptions import SearchError
from postsearch.query import schemas
from postsearch.query.service import QueryService

router = APIRouter(tags=["search"])


def _as_http_error(exc: Exception) -> HTTPException:
	if isinstance(exc, SearchError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=400, detail=str(exc))


@router.get("/search/posts", response_model=schemas.SearchPage)
async def search_posts_endpoint(
	q: str = Query(default="", max_length=100),
	category_id: Optional[int] = Query(default=None),
	sort_by: schemas.SortMode = Query(default="relevance"),
	limit: int = Query(default=20, ge=1, le=50),
	offset: int = Query(default=0, ge=0),
	service: QueryService = Depends(get_query_service),
) -> schemas.SearchPage:
	try:
		return await service.search(q, category_id=category_id, sort_by=sort_by, limit=limit, offset=offset)
	except SearchError as exc:
		raise _as_http_error(exc) from exc


@router.get("/search/suggestions", response_model=schemas.SuggestionsResponse)
async def suggestions_endpoint(
	q: str = Query(default="", max_length=50),
	limit: int = Query(default=5, ge=1, le=10),
	service: QueryService = Depends(get_query_service),
) -> schemas.SuggestionsResponse:
	try:
		items = await service.suggestions(q, limit=limit)
	except SearchError as exc:
		raise _as_http_error(exc) from exc
	return schemas.SuggestionsResponse(items=items)


@router.get("/search/popular", response_model=schemas.SuggestionsResponse)
async def popular_endpoint(service: QueryService = Depends(get_query_service)) -> schemas.SuggestionsResponse:
	return schemas.SuggestionsResponse(items=await service.popular_searches())


@router.get("/feed", response_model=schemas.SearchPage)
async def feed_endpoint(
	category_id: Optional[int] = Query(default=None),
	limit: int = Query(default=10, ge=1, le=50),
	offset: int = Query(default=0, ge=0),
	service: QueryService = Depends(get_query_service),
) -> schemas.SearchPage:
	try:
		return await service.feed(category_id=category_id, limit=limit, offset=offset)
	except SearchError as exc:
		raise _as_http_error(exc) from exc

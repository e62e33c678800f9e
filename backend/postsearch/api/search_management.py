"""Administrative endpoint to rebuild or wipe the search index."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from postsearch.api.deps import get_indexer
from postsearch.index.exceptions import InvalidMaintenanceAction
from postsearch.index.indexer import IndexOutcome, SearchIndexer
from postsearch.settings import settings

_LOG = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search-management", tags=["search-management"])

REINDEX = "reindex"
CLEAR = "clear"

_DESCRIPTION = {
	"endpoints": {
		"POST": {
			REINDEX: "Reindex all posts in Redis",
			CLEAR: "Clear all search indexes",
		}
	}
}

_SUCCESS_MESSAGES = {
	REINDEX: "All posts reindexed successfully",
	CLEAR: "All search indexes cleared",
}


class MaintenanceRequest(BaseModel):
	action: Any = None

	model_config = ConfigDict(extra="ignore")


class MaintenanceResponse(BaseModel):
	success: bool
	message: str
	code: Optional[str] = None
	documents: Optional[int] = None


class IndexStatsResponse(BaseModel):
	membership: int
	rankings: dict[str, int]
	documents: int
	cached: dict[str, int]
	repair_ids: list[int] = Field(default_factory=list)
	ranked_without_document: list[int] = Field(default_factory=list)
	documents_without_ranking: list[int] = Field(default_factory=list)
	consistent: bool

	model_config = ConfigDict(from_attributes=True)


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.search_admin_token
	if not token:
		return
	if _resolve_token(X_Admin_Token, authorization) != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


def _respond(payload: MaintenanceResponse, status_code: int) -> JSONResponse:
	return JSONResponse(content=payload.model_dump(exclude_none=True), status_code=status_code)


async def _run_action(indexer: SearchIndexer, action: Any) -> IndexOutcome:
	if action == REINDEX:
		return await indexer.reindex_all()
	if action == CLEAR:
		return await indexer.clear_all_indexes()
	raise InvalidMaintenanceAction(action)


@router.post("", response_model=MaintenanceResponse)
async def manage_search(
	payload: Optional[MaintenanceRequest] = Body(default=None),
	_: None = Depends(require_admin),
	indexer: SearchIndexer = Depends(get_indexer),
) -> JSONResponse:
	action = payload.action if payload is not None else None
	try:
		outcome = await _run_action(indexer, action)
	except InvalidMaintenanceAction as exc:
		_LOG.info("search_management.invalid_action", extra={"action": repr(exc.action)})
		return _respond(
			MaintenanceResponse(success=False, message=exc.detail, code=exc.code),
			exc.status_code,
		)
	except Exception:
		_LOG.exception("search_management.failed", extra={"action": action})
		return _respond(MaintenanceResponse(success=False, message="Operation failed"), 500)

	if not outcome.ok:
		_LOG.error("search_management.failed", extra={"action": action, "error": outcome.error})
		return _respond(MaintenanceResponse(success=False, message="Operation failed"), 500)
	_LOG.info("search_management.completed", extra={"action": action, "documents": outcome.documents})
	documents = outcome.documents if action == REINDEX else None
	return _respond(
		MaintenanceResponse(success=True, message=_SUCCESS_MESSAGES[action], documents=documents),
		200,
	)


@router.get("")
async def describe_search_management() -> dict[str, Any]:
	return _DESCRIPTION


@router.get("/stats", response_model=IndexStatsResponse)
async def search_index_stats(
	_: None = Depends(require_admin),
	indexer: SearchIndexer = Depends(get_indexer),
) -> IndexStatsResponse:
	stats = await indexer.stats()
	return IndexStatsResponse(
		membership=stats.membership,
		rankings=stats.rankings,
		documents=stats.documents,
		cached=stats.cached,
		repair_ids=stats.repair_ids,
		ranked_without_document=stats.ranked_without_document,
		documents_without_ranking=stats.documents_without_ranking,
		consistent=stats.consistent,
	)


__all__ = ["router", "require_admin", "REINDEX", "CLEAR"]

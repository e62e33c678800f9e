"""HTTP implementation of the query surface."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from postsearch.query.schemas import SearchPage, SuggestionsResponse


class HttpQueryClient:
	"""Calls the search routes of a running API with httpx."""

	def __init__(
		self,
		base_url: str = "http://localhost:8000",
		*,
		client: httpx.AsyncClient | None = None,
		timeout: float = 5.0,
	) -> None:
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

	async def search(
		self,
		query: str = "",
		*,
		category_id: Optional[int] = None,
		sort_by: str = "relevance",
		limit: int = 20,
		offset: int = 0,
	) -> SearchPage:
		params: dict[str, Any] = {"q": query, "sort_by": sort_by, "limit": limit, "offset": offset}
		if category_id is not None:
			params["category_id"] = category_id
		payload = await self._get("/search/posts", params)
		return SearchPage.model_validate(payload)

	async def suggestions(self, partial_query: str, *, limit: int = 5) -> list[str]:
		payload = await self._get("/search/suggestions", {"q": partial_query, "limit": limit})
		return SuggestionsResponse.model_validate(payload).items

	async def popular_searches(self) -> list[str]:
		payload = await self._get("/search/popular", None)
		return SuggestionsResponse.model_validate(payload).items

	async def feed(self, *, category_id: Optional[int] = None, limit: int = 10, offset: int = 0) -> SearchPage:
		params: dict[str, Any] = {"limit": limit, "offset": offset}
		if category_id is not None:
			params["category_id"] = category_id
		return SearchPage.model_validate(await self._get("/feed", params))

	async def _get(self, path: str, params: Optional[dict[str, Any]]) -> Any:
		response = await self._client.get(path, params=params)
		response.raise_for_status()
		return response.json()

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


__all__ = ["HttpQueryClient"]

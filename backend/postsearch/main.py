"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from postsearch.api import ops, search, search_management
from postsearch.api.deps import get_indexer
from postsearch.api.errors import install_error_handlers
from postsearch.infra import postgres
from postsearch.obs import init as obs_init
from postsearch.settings import settings
from postsearch.workers.change_listener import ChangeListener

_LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	listener: ChangeListener | None = None
	listener_task: asyncio.Task | None = None
	if settings.change_listener_enabled:
		listener = ChangeListener(indexer=get_indexer())
		listener_task = asyncio.create_task(listener.run_forever())
	try:
		yield
	finally:
		if listener is not None and listener_task is not None:
			listener.stop()
			try:
				await asyncio.wait_for(listener_task, timeout=5)
			except asyncio.TimeoutError:
				_LOG.warning("change_listener.shutdown_timeout")
				listener_task.cancel()
			await listener.drain()
		await postgres.close_pool()


def create_app() -> FastAPI:
	app = FastAPI(title="Post Search Index", lifespan=lifespan)
	install_error_handlers(app)
	obs_init(app)
	app.include_router(search.router)
	app.include_router(search_management.router)
	app.include_router(ops.router)
	return app


app = create_app()

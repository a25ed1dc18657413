"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from linkwatch.api import ops
from linkwatch.infra import postgres
from linkwatch.infra.redis import redis_client
from linkwatch.obs import init as obs_init
from linkwatch.scanning import configure as configure_scanner
from linkwatch.scanning import configure_postgres as configure_scanner_postgres
from linkwatch.scanning import router as scanning_router
from linkwatch.scanning import spawn_workers as spawn_scanner_workers
from linkwatch.scanning.domain import container
from linkwatch.scanning.infra.schema import ensure_schema
from linkwatch.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.storage_backend == "postgres":
		pool = await postgres.init_pool()
		await ensure_schema(pool)
		state = configure_scanner_postgres(pool, redis=redis_client)
	else:
		state = configure_scanner()
	worker_tasks: list[asyncio.Task] = []
	if settings.scanner_workers_enabled:
		worker_tasks.extend(
			spawn_scanner_workers(
				redis_client,
				state,
				ingress_stream=settings.ingress_stream,
				cleanup_interval=settings.rate_limit_cleanup_interval_ms / 1000,
			)
		)
	logger.info(
		"linkwatch started",
		extra={"storage_backend": settings.storage_backend, "workers": len(worker_tasks)},
	)
	try:
		yield
	finally:
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await container.shutdown()
		await postgres.close_pool()


app = FastAPI(title="Linkwatch", lifespan=lifespan)
obs_init(app)

allow_origins = list(settings.cors_allow_origins)
if allow_origins:
	app.add_middleware(
		CORSMiddleware,
		allow_origins=allow_origins,
		allow_credentials="*" not in allow_origins,
		allow_methods=["*"],
		allow_headers=["*"],
	)

app.include_router(ops.router, tags=["ops"])
app.include_router(scanning_router)

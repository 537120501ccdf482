# src/app/main.py
from __future__ import annotations
import logging
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.app.config import settings
from src.app.deps import get_recipe_repository
from src.app.routers.ingest import router as ingest_router
from src.app.routers.recipes import router as recipes_router
from src.services import embedding_queue

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
log = logging.getLogger("main")

app = FastAPI(title="Recipe Ingest API", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest_router)
app.include_router(recipes_router)


@app.on_event("startup")
async def startup() -> None:
    log.info("app.start env=%s log_level=%s", settings.APP_ENV, settings.LOG_LEVEL)
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        log.warning("embedding.worker_disabled reason=missing_supabase_config")
        return
    await embedding_queue.start_worker(get_recipe_repository().save_embedding)


@app.on_event("shutdown")
async def shutdown() -> None:
    await embedding_queue.stop_worker()


@app.get("/health")
def health():
    return {"ok": True}

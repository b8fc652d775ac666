from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from taskplane.routers import tasks as tasks_router
from taskplane.tasks.config import get_settings
from taskplane.tasks.redis_client import close_redis, get_redis_url

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 작업 API가 공유하는 Redis 연결은 서버 종료 시 닫는다.
    settings = get_settings()
    logger.info(
        f"taskplane API starting: redis={get_redis_url()} "
        f"max_attempts={settings.max_attempts} "
        f"processing_timeout={settings.processing_timeout} "
        f"waiting_timeout={settings.waiting_timeout}"
    )
    yield
    await close_redis()
    logger.info("taskplane API stopped: redis connection closed")


def create_app() -> FastAPI:
    # 작업 API 라우터와 CORS 미들웨어를 구성한다.
    load_dotenv()
    app = FastAPI(title="taskplane", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tasks_router.router, prefix="/api")

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.application.services.sync_orchestrator_service import SyncOrchestrator
from src.presentation.api.config import Settings
from src.presentation.api.workload_endpoints import build_orchestrator
from src.presentation.api.workload_endpoints import router as workload_router

# 環境変数をロード
load_dotenv()

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> FastAPI:
    """アプリケーションファクトリー"""
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    orchestrator = orchestrator or build_orchestrator(settings)
    app_suffix = settings.app_name_suffix

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 起動時はキャッシュから復元（ネットワークには触れない）
        restored = await orchestrator.start()
        if restored:
            logger.info(f"✅ キャッシュから復元: {orchestrator.state.task_count}件")
        yield
        await orchestrator.close()

    app = FastAPI(
        title=f"Workload Sync Engine{app_suffix}",
        description="タスク管理APIからタスクを同期し、担当者別の工数を集計するシステム",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    # CORS設定
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ルーターの登録
    app.include_router(workload_router)

    @app.get("/")
    async def root():
        return {
            "message": f"Workload Sync Engine{app_suffix} is running",
            "environment": settings.env,
            "version": "1.0.0"
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()

if __name__ == "__main__":
    env = os.getenv("ENV", "local")
    is_prod = env == "production"

    # 本番は reload=False、開発は True
    reload_flag = not is_prod

    workers = int(os.getenv("UVICORN_WORKERS", "1"))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=reload_flag,
        workers=workers,
    )

"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + static 파일 서빙
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

from config import SESSION_TTL, STATIC_DIR
from api.routes import router
import api.session as session
from proctored_cbt.services.exam_store import ExamStore, make_exam_store

SESSION_COOKIE = "cbt_session"
CLEANUP_INTERVAL = 300  # 5분

logger = logging.getLogger(__name__)


async def _cleanup_loop() -> None:
    # 세션 teardown이 이벤트 루프 위에서 돌도록 스레드 대신 태스크로 실행
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        removed = session.cleanup_expired()
        if removed:
            logger.info(f"만료 세션 {removed}개 정리")


def create_app(store: Optional[ExamStore] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup = asyncio.create_task(_cleanup_loop())
        try:
            yield
        finally:
            cleanup.cancel()
            controllers = session.close_all()
            # 강제 종료된 응시의 결과 전송을 마친 뒤 저장소를 닫는다
            for controller in controllers:
                await controller.flush_report()
            if controllers:
                logger.info(f"서버 종료: 응시 세션 {len(controllers)}개 정리")
            await app.state.store.aclose()

    app = FastAPI(title="Proctored CBT", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store or make_exam_store()

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)

    # static 파일 마운트 (proctor.js — 브라우저 환경 신호 보고)
    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app

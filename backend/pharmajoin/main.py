import time
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pharmajoin.api.api import api_router
from pharmajoin.core.config import settings
from pharmajoin.core.exceptions import AppException
from pharmajoin.core.handlers import app_exception_handler, http_exception_handler, validation_exception_handler
from pharmajoin.core.infra import lifespan_for
from pharmajoin.core.logging.setup import setup_logging
from pharmajoin.core.middleware.error_handler import GlobalExceptionHandlerMiddleware, RequestLogMiddleware
from pharmajoin.db.session import Database

# 1. 初始化全局日志系统 (Setup Global Logging)
setup_logging()
logger = structlog.get_logger()


def create_app(database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan_for(database),
    )
    if database is not None:
        app.state.database = database

    # 2. 注册中间件 (Last Added, First Executed)
    app.add_middleware(GlobalExceptionHandlerMiddleware)
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 3. 注册特定异常处理器 (Handle Specific Exceptions)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        logger.info("root_accessed")
        return "Você está prestes a fazer o melhor Join da sua vida."

    @app.get("/health")
    async def health_check():
        """
        健康检查接口 (Health Check)
        """
        return {
            "status": "ok",
            "project": settings.PROJECT_NAME,
            "timestamp": time.time()
        }

    return app


app = create_app()


def run():
    import uvicorn
    logger.info("server_starting", host=settings.HOST, port=settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()

import time
import uuid
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = structlog.get_logger("request_logger")

class GlobalExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    全局异常捕获中间件 (Global Exception Handler Middleware)
    1. 捕获所有未处理的异常 (Uncaught Exceptions)。
    2. 记录结构化错误日志 (Stack Trace, Request Context)。
    3. 返回 {"error", "message"} 形式的 500 响应。
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = (
            request.headers.get("X-Request-ID")
            or getattr(getattr(request, "state", object()), "request_id", "")
            or str(uuid.uuid4())
        )
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)

            process_time = time.perf_counter() - start_time
            if response.status_code >= 400:
                logger.warning(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_s=process_time
                )

            return response

        except Exception as exc:
            process_time = time.perf_counter() - start_time

            logger.error(
                "uncaught_exception",
                error=str(exc),
                error_type=type(exc).__name__,
                method=request.method,
                path=request.url.path,
                duration_s=process_time,
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "Algo deu errado!",
                    "message": str(exc),
                }
            )

class RequestLogMiddleware(BaseHTTPMiddleware):
    """
    请求日志中间件 (Request Logging Middleware)
    确保每个请求都有 Request ID，并绑定到 Structlog 上下文。
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response

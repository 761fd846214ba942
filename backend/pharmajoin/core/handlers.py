from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from pharmajoin.core.exceptions import AppException, SystemException

logger = structlog.get_logger(__name__)

async def app_exception_handler(request: Request, exc: AppException):
    """
    处理自定义业务异常
    400 -> {"error"}; 500 -> {"error", "details"}
    """
    content = {"error": exc.msg}
    if isinstance(exc, SystemException) or exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.code, content=content)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    处理 Pydantic 校验异常，统一映射为 400
    """
    logger.info("request_validation_failed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=400,
        content={"error": "Parâmetros inválidos."}
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    处理 FastAPI/Starlette 内置 HTTP 异常 (404, 405 etc)
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail}
    )

from fastapi import APIRouter
from pharmajoin.api.endpoints import queries

"""
API 路由汇总 (API Router Aggregator)
两种查询策略共用同一前缀 (settings.API_PREFIX)。
"""
api_router = APIRouter()
api_router.include_router(queries.router, tags=["queries"])

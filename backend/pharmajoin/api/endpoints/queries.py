from typing import List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, Query

from pharmajoin.core.exceptions import SystemException, ValidationException
from pharmajoin.schemas.queries import ErrorResponse, InternalErrorResponse, QueryEnvelope
from pharmajoin.services.interaction_query_service import (
    InteractionQueryService,
    QueryOutcome,
    get_query_service,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": InternalErrorResponse},
}


def _single_value(values: Optional[List[str]]) -> Optional[str]:
    # 重复参数 (?droga1=a&droga1=b) 与缺失同样视为无效
    if values is None or len(values) != 1:
        return None
    return values[0]


def validate_drug_pair(droga1: Optional[List[str]], droga2: Optional[List[str]]) -> Tuple[str, str]:
    """Fail fast, before any read, on missing, repeated, empty or equal names."""
    nome1, nome2 = _single_value(droga1), _single_value(droga2)
    if not nome1 or not nome2:
        raise ValidationException("Parâmetros droga1 e droga2 (strings) são obrigatórios.")
    if nome1 == nome2:
        raise ValidationException("Os nomes das drogas devem ser diferentes.")
    return nome1, nome2


def build_envelope(outcome: QueryOutcome, droga1: str, droga2: str) -> QueryEnvelope:
    return QueryEnvelope(
        description=f"Resultado da consulta {outcome.strategy.label} para '{droga1}' e '{droga2}'",
        approach=outcome.strategy.approach,
        tempoExecucaoMs=round(outcome.elapsed_ms, 2),
        rowCount=outcome.row_count,
        data=outcome.pacientes,
    )


@router.get("/join-padrao", response_model=QueryEnvelope, responses=ERROR_RESPONSES)
async def get_resultado_join_padrao(
    droga1: Optional[List[str]] = Query(None, description="Nome da primeira droga"),
    droga2: Optional[List[str]] = Query(None, description="Nome da segunda droga"),
    service: InteractionQueryService = Depends(get_query_service),
):
    """
    JOIN padrão: patients taking two interacting drugs, computed by one
    multi-join query.
    """
    droga1, droga2 = validate_drug_pair(droga1, droga2)
    try:
        outcome = await service.standard_join(droga1, droga2)
    except Exception as e:
        logger.error("standard_join_failed", droga1=droga1, droga2=droga2, error=str(e), exc_info=True)
        raise SystemException(
            msg="Erro interno do servidor ao processar a consulta padrão.",
            details=str(e),
        )
    return build_envelope(outcome, droga1, droga2)


@router.get("/busca-expansao-join", response_model=QueryEnvelope, responses=ERROR_RESPONSES)
async def get_resultado_busca_expansao(
    droga1: Optional[List[str]] = Query(None, description="Nome da primeira droga"),
    droga2: Optional[List[str]] = Query(None, description="Nome da segunda droga"),
    service: InteractionQueryService = Depends(get_query_service),
):
    """
    Busca & Expansão: the same question answered with sequential lookups and
    an application-side set intersection.
    """
    droga1, droga2 = validate_drug_pair(droga1, droga2)
    try:
        outcome = await service.lookup_and_expand(droga1, droga2)
    except Exception as e:
        logger.error("lookup_and_expand_failed", droga1=droga1, droga2=droga2, error=str(e), exc_info=True)
        raise SystemException(
            msg="Erro interno inesperado do servidor ao processar a consulta busca & expansão.",
            details=str(e),
        )
    return build_envelope(outcome, droga1, droga2)

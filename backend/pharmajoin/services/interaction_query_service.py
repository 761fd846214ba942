import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog
from fastapi import Depends
from sqlalchemy import Integer, and_, any_, bindparam, literal, or_, select
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from pharmajoin.db.models import InteracaoMedicamentosa, Medicamento, Paciente, PacienteMedicamento
from pharmajoin.db.session import get_db

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Strategy:
    approach: str
    label: str


STANDARD_JOIN = Strategy(approach="Standard JOIN", label="JOIN Padrão")
LOOKUP_EXPAND = Strategy(approach="Lookup & Expand", label="Busca & Expansão")


@dataclass
class QueryOutcome:
    """Result of one strategy run: patient rows plus wall-clock time."""
    strategy: Strategy
    pacientes: List[Dict[str, Any]] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def row_count(self) -> int:
        return len(self.pacientes)


def intersect_patient_ids(first: Set[int], second: Set[int]) -> List[int]:
    """Iterate the smaller set and probe the larger one."""
    if len(first) < len(second):
        smaller, larger = first, second
    else:
        smaller, larger = second, first
    return [paciente_id for paciente_id in smaller if paciente_id in larger]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class InteractionQueryService:
    """
    药物相互作用患者查询 (Interacting-drug patient queries)
    Two strategies over the same schema:
    - standard_join: one declarative query, the store plans the join.
    - lookup_and_expand: sequential point lookups joined in the application
      tier by set intersection.
    Both are read-only; any driver error propagates to the caller.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch_all(self, stmt, step: str) -> List[Any]:
        start = time.perf_counter()
        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except Exception:
            logger.error("query_failed", step=step)
            raise
        logger.info("query_executed", step=step, duration_ms=round(_elapsed_ms(start), 2), rows=len(rows))
        return rows

    def _id_filter(self, column, ids: List[int]):
        # PostgreSQL 用单个数组参数，避免超出驱动的绑定参数上限
        if self.session.bind is not None and self.session.bind.dialect.name == "postgresql":
            return column == any_(bindparam("paciente_ids", value=ids, type_=ARRAY(Integer)))
        return column.in_(ids)

    def _patient_details_stmt(self, paciente_ids: List[int]):
        return select(Paciente.id, Paciente.nome).where(self._id_filter(Paciente.id, paciente_ids))

    @staticmethod
    def _as_pacientes(rows: Iterable[Any]) -> List[Dict[str, Any]]:
        return [{"id": row.id, "nome": row.nome} for row in rows]

    async def standard_join(self, droga1: str, droga2: str) -> QueryOutcome:
        logger.info("standard_join_started", droga1=droga1, droga2=droga2)
        start = time.perf_counter()

        m1 = aliased(Medicamento, name="m1")
        m2 = aliased(Medicamento, name="m2")
        pm1 = aliased(PacienteMedicamento, name="pm1")
        pm2 = aliased(PacienteMedicamento, name="pm2")
        mi = aliased(InteracaoMedicamentosa, name="mi")

        stmt = (
            select(Paciente.id, Paciente.nome)
            .distinct()
            .select_from(Paciente)
            .join(pm1, Paciente.id == pm1.paciente_id)
            .join(m1, and_(pm1.medicamento_id == m1.id, m1.nome == droga1))
            .join(pm2, Paciente.id == pm2.paciente_id)
            .join(m2, and_(pm2.medicamento_id == m2.id, m2.nome == droga2))
            .join(
                mi,
                or_(
                    and_(mi.med1_id == m1.id, mi.med2_id == m2.id),
                    and_(mi.med1_id == m2.id, mi.med2_id == m1.id),
                ),
            )
            .where(m1.id != m2.id)
        )
        rows = await self._fetch_all(stmt, "standard_join")

        outcome = QueryOutcome(STANDARD_JOIN, self._as_pacientes(rows), _elapsed_ms(start))
        logger.info("standard_join_finished", rows=outcome.row_count, elapsed_ms=round(outcome.elapsed_ms, 2))
        return outcome

    async def _resolve_drug_ids(self, droga1: str, droga2: str) -> Optional[tuple]:
        rows = await self._fetch_all(
            select(Medicamento.id, Medicamento.nome).where(
                or_(Medicamento.nome == droga1, Medicamento.nome == droga2)
            ),
            "resolve_drugs",
        )
        if len(rows) < 2:
            # 未找到药物不是错误：调用方仍然需要拿到耗时
            logger.info("drugs_not_found", droga1=droga1, droga2=droga2, found=len(rows))
            return None

        ids = {row.nome: row.id for row in rows}
        med1_id, med2_id = ids.get(droga1), ids.get(droga2)
        if med1_id is None or med2_id is None:
            logger.warning("drug_ids_inconsistent", droga1=droga1, droga2=droga2)
            return None
        logger.info("drug_ids_resolved", med1_id=med1_id, med2_id=med2_id)
        return med1_id, med2_id

    async def _interaction_exists(self, med1_id: int, med2_id: int) -> bool:
        menor, maior = min(med1_id, med2_id), max(med1_id, med2_id)
        rows = await self._fetch_all(
            select(literal(1))
            .select_from(InteracaoMedicamentosa)
            .where(InteracaoMedicamentosa.med1_id == menor, InteracaoMedicamentosa.med2_id == maior)
            .limit(1),
            "check_interaction",
        )
        return bool(rows)

    async def _patient_ids_for(self, medicamento_id: int, step: str) -> Set[int]:
        rows = await self._fetch_all(
            select(PacienteMedicamento.paciente_id).where(PacienteMedicamento.medicamento_id == medicamento_id),
            step,
        )
        return {row.paciente_id for row in rows}

    async def lookup_and_expand(self, droga1: str, droga2: str) -> QueryOutcome:
        """
        Busca & Expansão:
        1. resolve both names in one fetch
        2. check the canonical (lower, higher) interaction pair
        3/4. fetch the patient-id set of each drug
        5. intersect, smaller set first
        6. fetch names for the intersection only
        Every short-circuit is a successful empty outcome.
        """
        logger.info("lookup_and_expand_started", droga1=droga1, droga2=droga2)
        start = time.perf_counter()

        pacientes = await self._lookup_and_expand_rows(droga1, droga2)

        outcome = QueryOutcome(LOOKUP_EXPAND, pacientes, _elapsed_ms(start))
        logger.info("lookup_and_expand_finished", rows=outcome.row_count, elapsed_ms=round(outcome.elapsed_ms, 2))
        return outcome

    async def _lookup_and_expand_rows(self, droga1: str, droga2: str) -> List[Dict[str, Any]]:
        drug_ids = await self._resolve_drug_ids(droga1, droga2)
        if drug_ids is None:
            return []
        med1_id, med2_id = drug_ids

        if not await self._interaction_exists(med1_id, med2_id):
            logger.info("interaction_not_found", droga1=droga1, droga2=droga2)
            return []
        logger.info("interaction_confirmed", droga1=droga1, droga2=droga2)

        pacientes_droga1 = await self._patient_ids_for(med1_id, "patients_drug1")
        logger.info("patients_found", droga=droga1, count=len(pacientes_droga1))
        if not pacientes_droga1:
            return []

        pacientes_droga2 = await self._patient_ids_for(med2_id, "patients_drug2")
        logger.info("patients_found", droga=droga2, count=len(pacientes_droga2))
        if not pacientes_droga2:
            return []

        intersecao = intersect_patient_ids(pacientes_droga1, pacientes_droga2)
        logger.info("intersection_computed", count=len(intersecao))
        if not intersecao:
            return []

        rows = await self._fetch_all(self._patient_details_stmt(intersecao), "patient_details")
        return self._as_pacientes(rows)


def get_query_service(db: AsyncSession = Depends(get_db)) -> InteractionQueryService:
    return InteractionQueryService(db)

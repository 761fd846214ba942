from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import delete
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.dialects.postgresql import asyncpg as pg_asyncpg
from sqlalchemy.exc import OperationalError

from pharmajoin.db.models import PacienteMedicamento
from pharmajoin.services.interaction_query_service import (
    LOOKUP_EXPAND,
    STANDARD_JOIN,
    InteractionQueryService,
)

DROGA_A = "DrogaA-Especial"
DROGA_B = "DrogaB-Comum"


def _ids(outcome):
    return {p["id"] for p in outcome.pacientes}


async def _run_both(database, droga1, droga2):
    async with database.session() as session:
        service = InteractionQueryService(session)
        join = await service.standard_join(droga1, droga2)
        expand = await service.lookup_and_expand(droga1, droga2)
    return join, expand


@pytest.mark.asyncio
async def test_strategies_agree_on_interacting_pair(populated_database):
    join, expand = await _run_both(populated_database, DROGA_A, DROGA_B)

    assert _ids(join) == _ids(expand) == {2, 3, 42}
    assert join.strategy is STANDARD_JOIN
    assert expand.strategy is LOOKUP_EXPAND
    assert join.row_count == len(join.pacientes) == 3
    assert {"id": 42, "nome": "Paciente 42"} in expand.pacientes


@pytest.mark.asyncio
async def test_interaction_matches_regardless_of_stored_order(populated_database):
    # stored as (2, 4); asking with the higher id first
    join, expand = await _run_both(populated_database, "Varfarina", DROGA_B)

    assert _ids(join) == _ids(expand) == {4, 5}


@pytest.mark.asyncio
async def test_swapping_drugs_yields_same_result(populated_database):
    forward_join, forward_expand = await _run_both(populated_database, DROGA_A, DROGA_B)
    reverse_join, reverse_expand = await _run_both(populated_database, DROGA_B, DROGA_A)

    assert _ids(forward_join) == _ids(reverse_join)
    assert _ids(forward_expand) == _ids(reverse_expand)


@pytest.mark.asyncio
@pytest.mark.parametrize("droga1, droga2", [
    (DROGA_A, "Inexistente"),
    ("Inexistente", DROGA_B),
    ("Nada", "Coisa Nenhuma"),
])
async def test_unknown_drug_gives_empty_result_not_error(populated_database, droga1, droga2):
    join, expand = await _run_both(populated_database, droga1, droga2)

    assert join.pacientes == [] and expand.pacientes == []
    assert expand.elapsed_ms >= 0.0
    assert join.elapsed_ms >= 0.0


@pytest.mark.asyncio
async def test_non_interacting_drugs_give_empty_result(populated_database):
    # patients 1 and 2 hold both drugs, but the pair does not interact
    join, expand = await _run_both(populated_database, DROGA_A, "Paracetamol-Solo")

    assert join.pacientes == []
    assert expand.pacientes == []


@pytest.mark.asyncio
async def test_interacting_drugs_without_shared_patients(populated_database):
    async with populated_database.session() as session:
        await session.execute(delete(PacienteMedicamento).where(PacienteMedicamento.medicamento_id == 4))
        await session.commit()

    join, expand = await _run_both(populated_database, DROGA_B, "Varfarina")

    assert join.pacientes == [] and expand.pacientes == []


@pytest.mark.asyncio
async def test_lookup_and_expand_stops_after_failed_resolution():
    session = AsyncMock()
    result = MagicMock()
    result.all.return_value = []
    session.execute.return_value = result

    outcome = await InteractionQueryService(session).lookup_and_expand(DROGA_A, DROGA_B)

    assert outcome.pacientes == []
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_read_failure_propagates_without_retry():
    session = AsyncMock()
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    service = InteractionQueryService(session)

    with pytest.raises(OperationalError):
        await service.lookup_and_expand(DROGA_A, DROGA_B)
    with pytest.raises(OperationalError):
        await service.standard_join(DROGA_A, DROGA_B)

    assert session.execute.await_count == 2


def _service_on(dialect_name):
    session = MagicMock()
    session.bind.dialect.name = dialect_name
    return InteractionQueryService(session)


def test_patient_details_binds_one_array_on_postgresql():
    stmt = _service_on("postgresql")._patient_details_stmt([1, 2, 3])

    compiled = stmt.compile(dialect=pg_asyncpg.dialect())

    assert "pacientes.id = ANY (" in str(compiled)
    assert compiled.params == {"paciente_ids": [1, 2, 3]}


def test_patient_details_uses_in_list_elsewhere():
    stmt = _service_on("sqlite")._patient_details_stmt([1, 2, 3])

    compiled = stmt.compile(dialect=sqlite_dialect.dialect())

    assert "pacientes.id IN (" in str(compiled)
    assert "ANY" not in str(compiled)

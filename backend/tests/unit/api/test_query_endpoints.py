from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from pharmajoin.services.interaction_query_service import InteractionQueryService, get_query_service

DROGA_A = "DrogaA-Especial"
DROGA_B = "DrogaB-Comum"
ENDPOINTS = ["/api/join-padrao", "/api/busca-expansao-join"]


def _ids(body):
    return {row["id"] for row in body["data"]}


@pytest.mark.asyncio
@pytest.mark.parametrize("path, approach, label", [
    ("/api/join-padrao", "Standard JOIN", "JOIN Padrão"),
    ("/api/busca-expansao-join", "Lookup & Expand", "Busca & Expansão"),
])
async def test_envelope_for_interacting_pair(client, path, approach, label):
    response = await client.get(path, params={"droga1": DROGA_A, "droga2": DROGA_B})

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"description", "approach", "tempoExecucaoMs", "rowCount", "data"}
    assert body["approach"] == approach
    assert body["description"] == f"Resultado da consulta {label} para '{DROGA_A}' e '{DROGA_B}'"
    assert body["rowCount"] == len(body["data"]) == 3
    assert {"id": 42, "nome": "Paciente 42"} in body["data"]
    assert isinstance(body["tempoExecucaoMs"], float)
    assert round(body["tempoExecucaoMs"], 2) == body["tempoExecucaoMs"]


@pytest.mark.asyncio
async def test_both_endpoints_return_equal_sets(client):
    params = {"droga1": DROGA_A, "droga2": DROGA_B}
    join = (await client.get(ENDPOINTS[0], params=params)).json()
    expand = (await client.get(ENDPOINTS[1], params=params)).json()

    assert _ids(join) == _ids(expand) == {2, 3, 42}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
async def test_swapped_parameters_give_same_patients(client, path):
    forward = (await client.get(path, params={"droga1": DROGA_A, "droga2": DROGA_B})).json()
    reverse = (await client.get(path, params={"droga1": DROGA_B, "droga2": DROGA_A})).json()

    assert _ids(forward) == _ids(reverse)


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
@pytest.mark.parametrize("params", [
    {"droga1": DROGA_A},
    {"droga2": DROGA_B},
    {},
    {"droga1": "", "droga2": DROGA_B},
    {"droga1": DROGA_A, "droga2": ""},
])
async def test_missing_or_empty_parameter_is_client_error(client, path, params):
    response = await client.get(path, params=params)

    assert response.status_code == 400
    assert response.json() == {"error": "Parâmetros droga1 e droga2 (strings) são obrigatórios."}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
@pytest.mark.parametrize("name", [DROGA_A, "Droga que nao existe"])
async def test_equal_names_are_rejected_before_any_read(app, client, path, name):
    session = AsyncMock()
    app.dependency_overrides[get_query_service] = lambda: InteractionQueryService(session)
    try:
        response = await client.get(path, params={"droga1": name, "droga2": name})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert response.json() == {"error": "Os nomes das drogas devem ser diferentes."}
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
@pytest.mark.parametrize("droga1, droga2", [
    (DROGA_A, "Inexistente"),
    (DROGA_A, "Paracetamol-Solo"),
])
async def test_no_result_cases_are_successful_and_empty(client, path, droga1, droga2):
    response = await client.get(path, params={"droga1": droga1, "droga2": droga2})

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == []
    assert body["rowCount"] == 0
    assert body["tempoExecucaoMs"] >= 0


@pytest.mark.asyncio
@pytest.mark.parametrize("path, message", [
    ("/api/join-padrao", "Erro interno do servidor ao processar a consulta padrão."),
    ("/api/busca-expansao-join", "Erro interno inesperado do servidor ao processar a consulta busca & expansão."),
])
async def test_store_failure_is_internal_error_with_details(app, client, path, message):
    session = AsyncMock()
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    app.dependency_overrides[get_query_service] = lambda: InteractionQueryService(session)
    try:
        response = await client.get(path, params={"droga1": DROGA_A, "droga2": DROGA_B})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == message
    assert "connection refused" in body["details"]
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_root_and_health(client):
    root = await client.get("/")
    health = await client.get("/health")

    assert root.status_code == 200
    assert "Join" in root.text
    assert health.status_code == 200
    assert health.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_request_id_header_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
@pytest.mark.parametrize("query", [
    f"droga1={DROGA_A}&droga1=X&droga2={DROGA_B}",
    f"droga1={DROGA_A}&droga2={DROGA_B}&droga2={DROGA_B}",
])
async def test_repeated_parameter_is_client_error(client, path, query):
    response = await client.get(f"{path}?{query}")

    assert response.status_code == 400
    assert response.json() == {"error": "Parâmetros droga1 e droga2 (strings) são obrigatórios."}


@pytest.mark.asyncio
async def test_malformed_typed_parameter_is_client_error(app, client):
    @app.get("/api/limite")
    async def limite(n: int):
        return {"n": n}

    response = await client.get("/api/limite", params={"n": "abc"})

    assert response.status_code == 400
    assert response.json() == {"error": "Parâmetros inválidos."}


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ENDPOINTS)
async def test_unhandled_exception_becomes_generic_internal_error(app, client, path):
    def broken_service():
        raise RuntimeError("pool not initialised")

    app.dependency_overrides[get_query_service] = broken_service
    try:
        response = await client.get(path, params={"droga1": DROGA_A, "droga2": DROGA_B})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "Algo deu errado!", "message": "pool not initialised"}

import httpx
import pytest_asyncio
from sqlalchemy import insert

from pharmajoin.db.base_class import Base
from pharmajoin.db.models import InteracaoMedicamentosa, Medicamento, Paciente, PacienteMedicamento, Severidade
from pharmajoin.db.session import Database
from pharmajoin.main import create_app

DROGA_A = "DrogaA-Especial"
DROGA_B = "DrogaB-Comum"
DROGA_SOLO = "Paracetamol-Solo"
VARFARINA = "Varfarina"

# medicamento id -> pacientes que o tomam
HOLDERS = {
    1: [1, 2, 3, 42],      # DrogaA-Especial
    2: [2, 3, 4, 5, 42],   # DrogaB-Comum
    3: [1, 2, 6, 8],       # Paracetamol-Solo, sem interações
    4: [4, 5, 6, 7],       # Varfarina, interage com DrogaB
}


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def populated_database(database):
    """
    Small fixed dataset:
    - DrogaA-Especial x DrogaB-Comum interact (Grave); shared patients {2, 3, 42}
    - DrogaB-Comum x Varfarina interact (Leve); shared patients {4, 5}
    - Paracetamol-Solo interacts with nothing
    """
    paciente_ids = sorted({pid for pids in HOLDERS.values() for pid in pids} | {9, 10})
    async with database.engine.begin() as conn:
        await conn.execute(insert(Paciente), [{"id": pid, "nome": f"Paciente {pid}"} for pid in paciente_ids])
        await conn.execute(insert(Medicamento), [
            {"id": 1, "nome": DROGA_A},
            {"id": 2, "nome": DROGA_B},
            {"id": 3, "nome": DROGA_SOLO},
            {"id": 4, "nome": VARFARINA},
        ])
        await conn.execute(insert(PacienteMedicamento), [
            {"paciente_id": pid, "medicamento_id": med_id}
            for med_id, pids in HOLDERS.items()
            for pid in pids
        ])
        await conn.execute(insert(InteracaoMedicamentosa), [
            {"med1_id": 1, "med2_id": 2, "severidade": Severidade.GRAVE, "descricao": "A x B"},
            {"med1_id": 2, "med2_id": 4, "severidade": Severidade.LEVE, "descricao": "B x Varfarina"},
        ])
    return database


@pytest_asyncio.fixture
async def app(populated_database):
    return create_app(database=populated_database)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

import argparse
import asyncio
import itertools
import string
import random
import sys
from dataclasses import dataclass, fields
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import structlog
from faker import Faker
from sqlalchemy import Table, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from pharmajoin.core.config import Settings, settings as default_settings
from pharmajoin.core.logging.setup import setup_logging
from pharmajoin.db.base_class import Base
from pharmajoin.db.models import InteracaoMedicamentosa, Medicamento, Paciente, PacienteMedicamento, Severidade
from pharmajoin.db.session import Database

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION = "23505"
PROGRESS_EVERY_PACIENTES = 10_000
PROGRESS_EVERY_INTERACOES = 100
MAX_ATTEMPTS_FACTOR = 5


@dataclass
class SeedConfig:
    num_pacientes: int = 100_000
    num_medicamentos: int = 1_000
    min_meds_por_paciente: int = 5
    max_meds_por_paciente: int = 40
    pct_pacientes_droga_a: float = 0.15
    pct_pacientes_droga_b: float = 0.18
    nome_droga_a: str = "DrogaA-Especial"
    nome_droga_b: str = "DrogaB-Comum"
    num_interacoes: int = 500
    batch_size: int = 5_000
    locale: str = "pt_BR"
    random_seed: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SeedConfig":
        return cls(
            num_pacientes=settings.SEED_NUM_PACIENTES,
            num_medicamentos=settings.SEED_NUM_MEDICAMENTOS,
            min_meds_por_paciente=settings.SEED_MIN_MEDS_POR_PACIENTE,
            max_meds_por_paciente=settings.SEED_MAX_MEDS_POR_PACIENTE,
            pct_pacientes_droga_a=settings.SEED_PCT_PACIENTES_DROGA_A,
            pct_pacientes_droga_b=settings.SEED_PCT_PACIENTES_DROGA_B,
            nome_droga_a=settings.SEED_NOME_DROGA_A,
            nome_droga_b=settings.SEED_NOME_DROGA_B,
            num_interacoes=settings.SEED_NUM_INTERACOES,
            batch_size=settings.SEED_BATCH_SIZE,
            locale=settings.SEED_LOCALE,
        )

    def validate(self) -> None:
        if self.num_medicamentos < 2:
            raise ValueError("num_medicamentos must be at least 2 (the two named drugs)")
        if self.nome_droga_a == self.nome_droga_b:
            raise ValueError("the two named drugs must have different names")
        if not 0 < self.min_meds_por_paciente <= self.max_meds_por_paciente:
            raise ValueError("expected 0 < min_meds_por_paciente <= max_meds_por_paciente")
        for pct in (self.pct_pacientes_droga_a, self.pct_pacientes_droga_b):
            if not 0.0 <= pct <= 1.0:
                raise ValueError("prevalence must be within [0, 1]")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")


@dataclass
class SeedReport:
    medicamentos: int = 0
    pacientes: int = 0
    associacoes: int = 0
    interacoes: int = 0
    droga_a_id: Optional[int] = None
    droga_b_id: Optional[int] = None


def is_unique_violation(exc: BaseException) -> bool:
    """True when the driver classified the failure as a uniqueness conflict."""
    orig = getattr(exc, "orig", None) or exc
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    # sqlite 不提供 SQLSTATE
    return isinstance(exc, IntegrityError) and "UNIQUE constraint failed" in str(orig)


def _clean_copy_text(value: str) -> str:
    return value.replace("\n", " ").replace("\t", " ").replace("\\", " ")


class DatabaseSeeder:
    """
    合成数据生成器 (Synthetic data seeder)
    Recreates the four tables and fills them in a single transaction:
    commit only if every step succeeds, otherwise nothing is left behind.
    """

    def __init__(self, engine: AsyncEngine, config: SeedConfig):
        config.validate()
        self.engine = engine
        self.config = config
        self.rng = random.Random(config.random_seed)
        self.faker = Faker(config.locale)
        if config.random_seed is not None:
            self.faker.seed_instance(config.random_seed)

    async def run(self) -> SeedReport:
        report = SeedReport()
        logger.info("seed_started", dialect=self.engine.dialect.name, **{
            f.name: getattr(self.config, f.name) for f in fields(self.config)
        })
        try:
            async with self.engine.begin() as conn:
                logger.info("seed_transaction_begin")
                await self._apply_schema(conn)

                med_ids, report.droga_a_id, report.droga_b_id = await self._seed_medicamentos(conn)
                report.medicamentos = len(med_ids)

                paciente_ids = await self._seed_pacientes(conn)
                report.pacientes = len(paciente_ids)

                report.associacoes = await self._seed_associacoes(
                    conn, paciente_ids, med_ids, report.droga_a_id, report.droga_b_id
                )
                report.interacoes = await self._seed_interacoes(
                    conn, med_ids, report.droga_a_id, report.droga_b_id
                )
        except Exception:
            logger.error("seed_failed_rolled_back", exc_info=True)
            raise

        logger.info("seed_committed", **report.__dict__)
        return report

    async def _apply_schema(self, conn: AsyncConnection) -> None:
        logger.info("schema_applying")
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        logger.info("schema_applied", tables=sorted(Base.metadata.tables))

    async def _insert_medicamento(self, conn: AsyncConnection, nome: str) -> int:
        result = await conn.execute(insert(Medicamento).values(nome=nome).returning(Medicamento.id))
        return result.scalar_one()

    def _random_drug_name(self) -> str:
        suffix = self.faker.lexify("????", letters=string.ascii_letters + string.digits)
        return f"{self.faker.word().capitalize()} {self.faker.word()} {suffix}"[:100]

    async def _seed_medicamentos(self, conn: AsyncConnection) -> Tuple[List[int], int, int]:
        cfg = self.config
        logger.info("medicamentos_generating", target=cfg.num_medicamentos)

        droga_a_id = await self._insert_medicamento(conn, cfg.nome_droga_a)
        droga_b_id = await self._insert_medicamento(conn, cfg.nome_droga_b)
        med_ids = [droga_a_id, droga_b_id]
        nomes: Set[str] = {cfg.nome_droga_a, cfg.nome_droga_b}

        while len(med_ids) < cfg.num_medicamentos:
            nome = self._random_drug_name()
            if nome in nomes:
                continue
            try:
                async with conn.begin_nested():
                    med_ids.append(await self._insert_medicamento(conn, nome))
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                logger.warning("medicamento_duplicado_skipped", nome=nome)
            nomes.add(nome)

        logger.info("medicamentos_generated", count=len(med_ids), droga_a_id=droga_a_id, droga_b_id=droga_b_id)
        return med_ids, droga_a_id, droga_b_id

    async def _bulk_load(self, conn: AsyncConnection, table: Table, columns: Sequence[str],
                         records: Iterable[tuple]) -> int:
        """COPY on PostgreSQL, batched executemany elsewhere."""
        if conn.dialect.name == "postgresql":
            raw = await conn.get_raw_connection()
            status = await raw.driver_connection.copy_records_to_table(
                table.name, records=records, columns=list(columns)
            )
            return int(status.split()[-1])

        total = 0
        iterator = iter(records)
        while True:
            batch = list(itertools.islice(iterator, self.config.batch_size))
            if not batch:
                return total
            await conn.execute(insert(table), [dict(zip(columns, record)) for record in batch])
            total += len(batch)

    def _pacientes_records(self) -> Iterator[tuple]:
        for _ in range(self.config.num_pacientes):
            yield (_clean_copy_text(self.faker.name()),)

    async def _seed_pacientes(self, conn: AsyncConnection) -> List[int]:
        logger.info("pacientes_generating", target=self.config.num_pacientes)
        await self._bulk_load(conn, Paciente.__table__, ["nome"], self._pacientes_records())
        result = await conn.execute(select(Paciente.id).order_by(Paciente.id))
        paciente_ids = list(result.scalars().all())
        logger.info("pacientes_generated", count=len(paciente_ids))
        return paciente_ids

    def medicamentos_para_paciente(self, med_ids: Sequence[int], droga_a_id: int, droga_b_id: int) -> Set[int]:
        """Distinct drugs for one patient; the named drugs follow their prevalence."""
        cfg = self.config
        num_meds = self.rng.randint(cfg.min_meds_por_paciente, cfg.max_meds_por_paciente)
        meds: Set[int] = set()
        if self.rng.random() < cfg.pct_pacientes_droga_a:
            meds.add(droga_a_id)
        if self.rng.random() < cfg.pct_pacientes_droga_b:
            meds.add(droga_b_id)
        target = min(num_meds, len(med_ids))
        while len(meds) < target:
            meds.add(self.rng.choice(med_ids))
        return meds

    def _associacoes_records(self, paciente_ids: Sequence[int], med_ids: Sequence[int],
                             droga_a_id: int, droga_b_id: int) -> Iterator[tuple]:
        for i, paciente_id in enumerate(paciente_ids, start=1):
            for med_id in self.medicamentos_para_paciente(med_ids, droga_a_id, droga_b_id):
                yield (paciente_id, med_id)
            if i % PROGRESS_EVERY_PACIENTES == 0:
                logger.info("associacoes_progress", pacientes_processados=i)

    async def _seed_associacoes(self, conn: AsyncConnection, paciente_ids: Sequence[int],
                                med_ids: Sequence[int], droga_a_id: int, droga_b_id: int) -> int:
        logger.info("associacoes_generating", pacientes=len(paciente_ids))
        count = await self._bulk_load(
            conn,
            PacienteMedicamento.__table__,
            ["paciente_id", "medicamento_id"],
            self._associacoes_records(paciente_ids, med_ids, droga_a_id, droga_b_id),
        )
        logger.info("associacoes_generated", count=count)
        return count

    async def _insert_interacao(self, conn: AsyncConnection, med1_id: int, med2_id: int,
                                severidade: Severidade, descricao: str) -> None:
        await conn.execute(
            insert(InteracaoMedicamentosa).values(
                med1_id=med1_id, med2_id=med2_id, severidade=severidade, descricao=descricao
            )
        )

    async def _seed_interacoes(self, conn: AsyncConnection, med_ids: Sequence[int],
                               droga_a_id: int, droga_b_id: int) -> int:
        cfg = self.config
        logger.info("interacoes_generating", target=cfg.num_interacoes)

        menor, maior = min(droga_a_id, droga_b_id), max(droga_a_id, droga_b_id)
        await self._insert_interacao(
            conn, menor, maior, Severidade.GRAVE,
            f"Interação crítica documentada entre {cfg.nome_droga_a} e {cfg.nome_droga_b}",
        )
        geradas: Set[Tuple[int, int]] = {(menor, maior)}
        logger.info("interacao_especial_created", med1_id=menor, med2_id=maior)

        max_possible = len(med_ids) * (len(med_ids) - 1) // 2
        max_attempts = cfg.num_interacoes * MAX_ATTEMPTS_FACTOR
        severidades = list(Severidade)
        added = 0
        attempts = 0

        while added < cfg.num_interacoes and len(geradas) < max_possible and attempts < max_attempts:
            attempts += 1
            id1, id2 = self.rng.sample(med_ids, 2)
            par = (min(id1, id2), max(id1, id2))
            if par in geradas:
                continue
            descricao = f"Interação aleatória {added + 1} entre med {par[0]} e med {par[1]}"
            try:
                async with conn.begin_nested():
                    await self._insert_interacao(conn, par[0], par[1], self.rng.choice(severidades), descricao)
                added += 1
                if added % PROGRESS_EVERY_INTERACOES == 0:
                    logger.info("interacoes_progress", count=added)
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                logger.warning("interacao_duplicada_skipped", med1_id=par[0], med2_id=par[1])
            geradas.add(par)

        if added < cfg.num_interacoes and attempts >= max_attempts:
            logger.warning("interacoes_attempt_budget_exhausted",
                           max_attempts=max_attempts, generated=added, target=cfg.num_interacoes)
        logger.info("interacoes_generated", random=added, total=added + 1)
        return added + 1


def build_parser(config: SeedConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Populate the drug-interaction schema with synthetic data.")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--pacientes", type=int, default=config.num_pacientes)
    parser.add_argument("--medicamentos", type=int, default=config.num_medicamentos)
    parser.add_argument("--min-meds", type=int, default=config.min_meds_por_paciente)
    parser.add_argument("--max-meds", type=int, default=config.max_meds_por_paciente)
    parser.add_argument("--pct-droga-a", type=float, default=config.pct_pacientes_droga_a)
    parser.add_argument("--pct-droga-b", type=float, default=config.pct_pacientes_droga_b)
    parser.add_argument("--droga-a", default=config.nome_droga_a)
    parser.add_argument("--droga-b", default=config.nome_droga_b)
    parser.add_argument("--interacoes", type=int, default=config.num_interacoes)
    parser.add_argument("--batch-size", type=int, default=config.batch_size)
    parser.add_argument("--random-seed", type=int, default=None)
    return parser


def config_from_args(args: argparse.Namespace, base: SeedConfig) -> SeedConfig:
    return SeedConfig(
        num_pacientes=args.pacientes,
        num_medicamentos=args.medicamentos,
        min_meds_por_paciente=args.min_meds,
        max_meds_por_paciente=args.max_meds,
        pct_pacientes_droga_a=args.pct_droga_a,
        pct_pacientes_droga_b=args.pct_droga_b,
        nome_droga_a=args.droga_a,
        nome_droga_b=args.droga_b,
        num_interacoes=args.interacoes,
        batch_size=args.batch_size,
        locale=base.locale,
        random_seed=args.random_seed,
    )


async def seed_database(database_url: str, config: SeedConfig) -> SeedReport:
    database = Database(database_url, pool_size=1)
    try:
        return await DatabaseSeeder(database.engine, config).run()
    finally:
        await database.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    base = SeedConfig.from_settings(default_settings)
    args = build_parser(base).parse_args(argv)
    config = config_from_args(args, base)
    database_url = args.database_url or default_settings.DATABASE_URL

    try:
        asyncio.run(seed_database(database_url, config))
    except Exception as e:
        logger.error("seed_aborted", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import os
import logging
from dotenv import load_dotenv

# 项目根目录绝对路径（统一路径管理）
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

# override=False，优先使用系统环境变量，根目录 .env 仅作为默认值
ROOT_ENV_FILE = os.path.join(PROJECT_ROOT, ".env")
load_dotenv(ROOT_ENV_FILE, override=False)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Global settings.
    Read from the root .env file or the environment: database connection,
    pool sizing, HTTP surface, logging and seeding volumes.
    """
    PROJECT_NAME: str = "Pharmajoin"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    PROJECT_ROOT: str = PROJECT_ROOT

    # DATABASE (same variable names libpq uses)
    PGUSER: str = "postgres"
    PGPASSWORD: str = "postgres"
    PGHOST: str = "localhost"
    PGPORT: int = 5432
    PGDATABASE: str = "pharmajoin"
    DATABASE_URL: str = ""

    # Connection pool
    DB_POOL_MAX: int = 20
    DB_POOL_TIMEOUT: float = 2.0  # seconds to wait for a free connection
    # Mapped to pool_recycle: caps a connection's total age, not its idle time.
    # Stale connections are caught by pool_pre_ping on checkout.
    DB_POOL_IDLE_TIMEOUT: int = 30
    DB_ECHO: bool = False

    # Logging
    DEBUG: bool = False
    LOG_TO_FILE: bool = False
    LOG_DIR_OVERRIDE: Optional[str] = None

    # Seeding
    SEED_NUM_PACIENTES: int = 100_000
    SEED_NUM_MEDICAMENTOS: int = 1_000
    SEED_MIN_MEDS_POR_PACIENTE: int = 5
    SEED_MAX_MEDS_POR_PACIENTE: int = 40
    SEED_PCT_PACIENTES_DROGA_A: float = 0.15
    SEED_PCT_PACIENTES_DROGA_B: float = 0.18
    SEED_NOME_DROGA_A: str = "DrogaA-Especial"
    SEED_NOME_DROGA_B: str = "DrogaB-Comum"
    SEED_NUM_INTERACOES: int = 500
    SEED_BATCH_SIZE: int = 5_000
    SEED_LOCALE: str = "pt_BR"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=ROOT_ENV_FILE, extra="ignore")

    @property
    def LOG_DIR(self) -> str:
        dir_path = self.LOG_DIR_OVERRIDE or os.path.join(self.PROJECT_ROOT, "logs")
        os.makedirs(dir_path, exist_ok=True)
        return dir_path

    def __init__(self, **kwargs):
        """
        如果未设置 DATABASE_URL，则根据独立的 PG* 变量自动拼接生成。
        """
        super().__init__(**kwargs)
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.PGUSER}:{self.PGPASSWORD}"
                f"@{self.PGHOST}:{self.PGPORT}/{self.PGDATABASE}"
            )

        if self.PGPASSWORD in ("", "postgres"):
            logger.warning("[Security] PGPASSWORD is using a weak or default value! Not recommended for production.")


settings = Settings()

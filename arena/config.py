"""Application configuration via environment variables."""

from datetime import datetime
from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = "sqlite:///./arena.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # One process (and one credential set) per agent; the name picks the ledger table
    agent_name: str = "default"

    # Exchange
    exchange_id: str = "okx"
    exchange_api_key: str = ""
    exchange_api_secret: str = ""
    exchange_password: str = ""  # OKX passphrase
    exchange_sandbox: bool = False
    margin_mode: str = "isolated"

    # Accounting
    initial_balance: float = 10000.0
    sharpe_cutoff: datetime | None = None  # funding-reset point

    # Risk limits
    max_leverage: int = 40
    max_position_size_pct: float = 80.0  # of account value, per position
    max_total_exposure_pct: float = 300.0  # of account value, all open notional
    supported_coins: list[str] = ["BTC", "ETH", "SOL", "BNB", "DOGE", "XRP"]

    # Execution
    order_split_max_depth: int = 4
    retry_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds, doubled per attempt

    # Reporting
    snapshot_interval_minutes: int = 5  # 0 disables account snapshots

    model_config = {"env_prefix": "ARENA_", "env_file": PROJECT_ROOT / ".env"}


settings = Settings()

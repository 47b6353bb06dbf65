from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.disposal import OverDisposalPolicy
from domain.ledger import AccountType, CostBasisMethod

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DB_FILE = ARTIFACTS_DIR / "crypto_taxes.db"


class AppSettings(BaseSettings):
    tax_year: int | None = None
    account_type: AccountType = AccountType.INDIVIDUAL
    cost_basis_method: CostBasisMethod = CostBasisMethod.FIFO
    over_disposal_policy: OverDisposalPolicy = OverDisposalPolicy.ZERO_COST
    short_holding_days: int = 30
    prior_loss_carryforward: Decimal | None = None
    db_file: Path = DB_FILE

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from config import config
from db.db import init_db
from db.repositories import ProcessedTransactionRepository, TaxEventRepository
from domain.calculator import ProcessingResult, TaxCalculator
from domain.disposal import OverDisposalPolicy
from domain.ledger import AccountType, CostBasisMethod
from importers.kraken_importer import KrakenImporter
from utils.export import write_tax_events_csv, write_transactions_csv
from utils.tax_summary import render_errors, render_holdings, render_table_8_3, render_tax_summary

logger = logging.getLogger(__name__)


def run(
    trades_path: Path | None,
    ledger_path: Path | None,
    *,
    tax_year: int,
    account_type: AccountType,
    cost_basis_method: CostBasisMethod,
    over_disposal_policy: OverDisposalPolicy,
    short_holding_days: int,
    prior_loss_carryforward: Decimal | None = None,
    db_file: Path | None = None,
    events_csv: Path | None = None,
    transactions_csv: Path | None = None,
) -> ProcessingResult:
    # Get data
    importer = KrakenImporter(trades_path, ledger_path)
    trades = importer.load_trades()
    ledger = importer.load_ledger()

    session = init_db(db_file) if db_file is not None else None
    if prior_loss_carryforward is None:
        prior_loss_carryforward = Decimal("0")
        if session is not None and account_type == AccountType.BUSINESS:
            prior_loss_carryforward = TaxEventRepository(session).prior_loss_carryforward(tax_year)
            logger.info("Derived %s EUR loss carryforward into %d from %s", prior_loss_carryforward, tax_year, db_file)

    # Process stuff
    calculator = TaxCalculator(
        tax_year,
        cost_basis_method=cost_basis_method,
        account_type=account_type,
        prior_loss_carryforward=prior_loss_carryforward,
        over_disposal_policy=over_disposal_policy,
        short_holding_days=short_holding_days,
    )
    result = calculator.process(trades, ledger)

    if session is not None:
        ProcessedTransactionRepository(session).create_many(result.transactions)
        TaxEventRepository(session).replace_year(tax_year, result.tax_events)
        session.close()

    if events_csv is not None:
        write_tax_events_csv(events_csv, result.tax_events)
    if transactions_csv is not None:
        write_transactions_csv(transactions_csv, result.transactions)

    # Print summary
    print(f"Processed {len(trades)} trades and {len(ledger)} ledger entries into {len(result.tax_events)} tax events")
    render_tax_summary(result.summary)
    render_table_8_3(result.summary)
    render_holdings(calculator.holdings_summary())
    render_errors(result.errors)
    return result


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = config()

    parser = argparse.ArgumentParser(description="Compute Estonian crypto taxes from Kraken trades and ledger.")
    parser.add_argument("--trades", type=Path, default=None, help="Kraken trades export (.json or .csv)")
    parser.add_argument("--ledger", type=Path, default=None, help="Kraken ledger export (.json or .csv)")
    parser.add_argument("--year", type=int, default=settings.tax_year or datetime.now(timezone.utc).year - 1)
    parser.add_argument(
        "--account-type", type=AccountType, choices=list(AccountType), default=settings.account_type
    )
    parser.add_argument(
        "--method", type=CostBasisMethod, choices=list(CostBasisMethod), default=settings.cost_basis_method
    )
    parser.add_argument(
        "--over-disposal",
        type=OverDisposalPolicy,
        choices=list(OverDisposalPolicy),
        default=settings.over_disposal_policy,
    )
    parser.add_argument("--short-holding-days", type=int, default=settings.short_holding_days)
    parser.add_argument(
        "--prior-loss-carryforward",
        type=Decimal,
        default=settings.prior_loss_carryforward,
        help="Business loss carried into --year; derived from --db when omitted",
    )
    parser.add_argument("--db", type=Path, nargs="?", const=settings.db_file, default=None)
    parser.add_argument("--events-csv", type=Path, default=None)
    parser.add_argument("--transactions-csv", type=Path, default=None)
    args = parser.parse_args(argv)

    if args.trades is None and args.ledger is None:
        parser.error("at least one of --trades or --ledger is required")

    run(
        args.trades,
        args.ledger,
        tax_year=args.year,
        account_type=args.account_type,
        cost_basis_method=args.method,
        over_disposal_policy=args.over_disposal,
        short_holding_days=args.short_holding_days,
        prior_loss_carryforward=args.prior_loss_carryforward,
        db_file=args.db,
        events_csv=args.events_csv,
        transactions_csv=args.transactions_csv,
    )


if __name__ == "__main__":
    main()

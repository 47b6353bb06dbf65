from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from domain.calculator import RecordError
from domain.inventory import HoldingSummary
from domain.ledger import AccountType
from domain.tax_event import TaxSummary

from .formatting import format_currency, format_decimal, format_eur, format_rate

# Kraken is a US company, so all of its income is foreign-source income.
INCOME_COUNTRY = "USA"

_TABLE_8_3_SOURCES = (
    ("trading_gains", "Cryptocurrency trading gains (Kraken)"),
    ("margin_gains", "Cryptocurrency margin trading gains (Kraken)"),
    ("staking_income", "Cryptocurrency staking rewards (Kraken)"),
    ("earn_income", "Cryptocurrency earn rewards (Kraken)"),
    ("credit_income", "Cryptocurrency credits and rewards (Kraken)"),
    ("airdrop_income", "Cryptocurrency airdrops/forks (Kraken)"),
    ("other_income", "Other cryptocurrency income (Kraken)"),
)


@dataclass
class Table83Row:
    income_source: str
    country: str
    income_amount: Decimal
    deductions: Decimal
    taxable_amount: Decimal


def build_table_8_3_rows(summary: TaxSummary) -> list[Table83Row]:
    """Rows of Estonian declaration table 8.3 (income from foreign sources).

    Losses are not deductible for individuals, so deductions stay at zero and
    only positive income lines are reported.
    """
    rows: list[Table83Row] = []
    for field_name, income_source in _TABLE_8_3_SOURCES:
        amount: Decimal = getattr(summary, field_name)
        if amount <= 0:
            continue
        rows.append(
            Table83Row(
                income_source=income_source,
                country=INCOME_COUNTRY,
                income_amount=amount,
                deductions=Decimal("0"),
                taxable_amount=amount,
            )
        )
    return rows


def render_tax_summary(summary: TaxSummary) -> None:
    lines = [
        f"Tax summary {summary.tax_year} ({summary.account_type}, {summary.cost_basis_method}):",
        f"  Transactions:        {summary.total_transactions} ({summary.taxable_transactions} taxable)",
        f"  Total gains:         {format_eur(summary.total_gains)}",
        f"  Total losses:        {format_eur(summary.total_losses)}",
        f"  Net P&L:             {format_eur(summary.net_pnl)}",
        f"  Trading:             +{format_currency(summary.trading_gains)} / -{format_currency(summary.trading_losses)}",
        f"  Margin:              +{format_currency(summary.margin_gains)} / -{format_currency(summary.margin_losses)}",
        f"  Staking income:      {format_eur(summary.staking_income)}",
        f"  Earn income:         {format_eur(summary.earn_income)}",
        f"  Credit income:       {format_eur(summary.credit_income)}",
        f"  Airdrop income:      {format_eur(summary.airdrop_income)}",
        f"  Other income:        {format_eur(summary.other_income)}",
        f"  Trading fees:        {format_eur(summary.total_trading_fees)}",
        f"  Margin fees:         {format_eur(summary.total_margin_fees)}",
    ]

    if summary.account_type == AccountType.BUSINESS:
        lines.extend(
            [
                f"  Prior carryforward:  {format_eur(summary.prior_loss_carryforward)}",
                f"  Retained profit:     {format_eur(summary.retained_profit)}",
                f"  Distribution rate:   {format_rate(summary.distribution_tax_rate)} of net distribution",
                f"  Tax on distribution: {format_eur(summary.potential_distribution_tax)}",
            ]
        )
        if summary.has_loss_carryforward:
            lines.append(f"  Loss carried forward: {format_eur(summary.loss_carryforward)}")
    else:
        lines.extend(
            [
                f"  Taxable amount:      {format_eur(summary.taxable_amount)}",
                f"  Tax rate:            {format_rate(summary.tax_rate)}",
                f"  Estimated tax:       {format_eur(summary.estimated_tax)}",
            ]
        )

    if summary.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - {warning}" for warning in summary.warnings)

    print("\n".join(lines))


def render_table_8_3(summary: TaxSummary) -> None:
    print(f"Table 8.3 - income from foreign sources ({summary.tax_year}):")
    if summary.account_type == AccountType.BUSINESS:
        print("  (business accounts report in the annual accounts, not in table 8.3)")
        return

    rows = build_table_8_3_rows(summary)
    if not rows:
        print("  (no income to declare)")
        return

    source_width = max(len("Income source"), max(len(row.income_source) for row in rows), len("TOTAL"))
    country_width = max(len("Country"), max(len(row.country) for row in rows))
    income_width = max(len("Income"), max(len(format_currency(row.income_amount)) for row in rows))
    deduction_width = max(len("Deductions"), max(len(format_currency(row.deductions)) for row in rows))
    taxable_width = max(len("Taxable"), max(len(format_currency(row.taxable_amount)) for row in rows))

    total_income = sum((row.income_amount for row in rows), Decimal("0"))
    total_deductions = sum((row.deductions for row in rows), Decimal("0"))
    total_taxable = sum((row.taxable_amount for row in rows), Decimal("0"))
    income_width = max(income_width, len(format_currency(total_income)))
    taxable_width = max(taxable_width, len(format_currency(total_taxable)))

    header = (
        f"{'Income source':<{source_width}} "
        f"{'Country':<{country_width}} "
        f"{'Income':>{income_width}} "
        f"{'Deductions':>{deduction_width}} "
        f"{'Taxable':>{taxable_width}}"
    )
    lines = [header, "-" * len(header)]

    for row in rows:
        lines.append(
            f"{row.income_source:<{source_width}} "
            f"{row.country:<{country_width}} "
            f"{format_currency(row.income_amount):>{income_width}} "
            f"{format_currency(row.deductions):>{deduction_width}} "
            f"{format_currency(row.taxable_amount):>{taxable_width}}"
        )

    lines.append("-" * len(header))
    lines.append(
        f"{'TOTAL':<{source_width}} "
        f"{'':<{country_width}} "
        f"{format_currency(total_income):>{income_width}} "
        f"{format_currency(total_deductions):>{deduction_width}} "
        f"{format_currency(total_taxable):>{taxable_width}}"
    )
    lines.append(f"Tax rate: {format_rate(summary.tax_rate)}")
    lines.append(f"Estimated tax: {format_eur(total_taxable * summary.tax_rate)}")
    lines.append("Losses are not deductible in Estonia.")
    print("\n".join(lines))


def render_holdings(holdings: Iterable[HoldingSummary]) -> None:
    holdings_list = list(holdings)
    print("Open holdings:")
    if not holdings_list:
        print("  (empty)")
        return

    rows = [
        (
            holding.asset,
            format_decimal(holding.amount),
            format_currency(holding.cost_basis),
            format_currency(holding.average_cost),
        )
        for holding in holdings_list
    ]

    asset_width = max(len("Asset"), max(len(asset) for asset, _, _, _ in rows))
    amount_width = max(len("Amount"), max(len(amount) for _, amount, _, _ in rows))
    cost_width = max(len("Cost basis EUR"), max(len(cost) for _, _, cost, _ in rows))
    average_width = max(len("Avg cost EUR"), max(len(average) for _, _, _, average in rows))

    header = (
        f"{'Asset':<{asset_width}} "
        f"{'Amount':>{amount_width}} "
        f"{'Cost basis EUR':>{cost_width}} "
        f"{'Avg cost EUR':>{average_width}}"
    )
    lines = [header, "-" * len(header)]
    for asset, amount, cost, average in rows:
        lines.append(
            f"{asset:<{asset_width}} {amount:>{amount_width}} {cost:>{cost_width}} {average:>{average_width}}"
        )
    lines.append("-" * len(header))
    print("\n".join(lines))


def render_errors(errors: Iterable[RecordError]) -> None:
    errors_list = list(errors)
    if not errors_list:
        return
    print(f"Skipped {len(errors_list)} record(s):")
    for error in errors_list:
        print(f"  {error.id}: {error.error}")

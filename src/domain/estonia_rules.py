"""Estonian tax rules for cryptocurrency held on Kraken.

Individual (natural person):
- Gains are ordinary income, taxed at the income tax rate of the year.
- Losses are never deductible.
- Foreign exchange income (Kraken is a US company) goes to Table 8.3.

Business (OÜ):
- Retained profit is taxed at 0%; tax is due only on distribution.
- Distribution tax is charged on the net amount, rate / (1 - rate) on gross.
- Losses offset gains and carry forward.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple, assert_never

from .ledger import AccountType, AssetId, TradeSide, TransactionCategory, TransactionType

TAX_RATES: dict[int, Decimal] = {
    2023: Decimal("0.22"),
    2024: Decimal("0.22"),
    2025: Decimal("0.22"),
    2026: Decimal("0.22"),
}
DEFAULT_TAX_RATE = Decimal("0.22")

DISTRIBUTION_TAX_RATES: dict[int, Decimal] = {
    2023: Decimal("0.20"),
    2024: Decimal("0.20"),
    2025: Decimal("0.22"),
    2026: Decimal("0.22"),
}
DEFAULT_DISTRIBUTION_TAX_RATE = Decimal("0.22")

REPORTING_CURRENCY = "EUR"
FIAT_CURRENCIES = frozenset({"EUR", "USD", "GBP", "CHF", "JPY", "CAD", "AUD"})

ASSET_ALIASES = {
    "XBT": "BTC",
    "XXBT": "BTC",
    "XBT.M": "BTC",
    "XXDG": "DOGE",
    "XDG": "DOGE",
    "XETH": "ETH",
    "XXRP": "XRP",
    "ZEUR": "EUR",
    "ZUSD": "USD",
    "ZGBP": "GBP",
    "DOT28.S": "DOT",
    "DOT.S": "DOT",
    "KAVA21.S": "KAVA",
    "KAVA.S": "KAVA",
    "USDC.M": "USDC",
    "ETH2": "ETH",
    "ETH2.S": "ETH",
}

# Longer codes first so USDT is not read as USD + T.
QUOTE_CURRENCIES = ("USDT", "USDC", "EUR", "USD", "GBP", "CHF", "CAD", "AUD", "JPY", "BTC", "XBT", "ETH")

_STAKING_IN_SUBTYPES = frozenset({"spottostaking", "stakingfromspot"})
_STAKING_OUT_SUBTYPES = frozenset({"stakingtospot", "spotfromstaking"})
_EARN_ALLOCATION_SUBTYPES = frozenset({"allocation", "deallocation", "autoallocation", "migration"})


class Classification(NamedTuple):
    type: TransactionType
    category: TransactionCategory


def tax_rate(year: int, account_type: AccountType = AccountType.INDIVIDUAL) -> Decimal:
    if account_type == AccountType.BUSINESS:
        # Retained profit is untaxed; distribution is handled separately.
        return Decimal(0)
    return TAX_RATES.get(year, DEFAULT_TAX_RATE)


def distribution_tax_rate(year: int) -> Decimal:
    return DISTRIBUTION_TAX_RATES.get(year, DEFAULT_DISTRIBUTION_TAX_RATE)


def effective_distribution_rate(year: int) -> Decimal:
    """Rate on the net distribution, e.g. 22/78 for 2025."""
    rate = distribution_tax_rate(year)
    return rate / (1 - rate)


def map_kraken_ledger_type(raw_type: str, raw_subtype: str | None = None) -> TransactionType:
    kind = (raw_type or "").strip().lower()
    subtype = (raw_subtype or "").strip().lower()

    if kind == "trade":
        return TransactionType.TRADE
    if kind == "margin":
        return TransactionType.MARGIN_TRADE
    if kind == "settled":
        return TransactionType.MARGIN_SETTLEMENT
    if kind == "rollover":
        return TransactionType.ROLLOVER
    if kind == "deposit":
        return TransactionType.DEPOSIT
    if kind == "withdrawal":
        return TransactionType.WITHDRAWAL
    if kind in ("transfer", "staking"):
        if subtype in _STAKING_IN_SUBTYPES:
            return TransactionType.STAKING_DEPOSIT
        if subtype in _STAKING_OUT_SUBTYPES:
            return TransactionType.STAKING_WITHDRAWAL
        if kind == "staking":
            return TransactionType.STAKING_REWARD
        if subtype == "airdrop":
            return TransactionType.AIRDROP
        if subtype in ("fork", "spinoff"):
            return TransactionType.FORK
        return TransactionType.TRANSFER
    if kind == "dividend":
        return TransactionType.STAKING_REWARD
    if kind == "earn":
        if subtype in _EARN_ALLOCATION_SUBTYPES:
            return TransactionType.EARN_ALLOCATION
        return TransactionType.EARN_REWARD
    if kind == "creator":
        return TransactionType.EARN_ALLOCATION
    if kind in ("credit", "reward"):
        return TransactionType.CREDIT
    if kind == "airdrop":
        return TransactionType.AIRDROP
    if kind == "fork":
        return TransactionType.FORK
    if kind == "nfttrade":
        return TransactionType.NFT_TRADE
    if kind == "spend":
        return TransactionType.SPEND
    if kind == "receive":
        return TransactionType.RECEIVE
    if kind == "fee":
        return TransactionType.FEE
    return TransactionType.ADJUSTMENT


def categorize_transaction(
    transaction_type: TransactionType,
    side: TradeSide | str | None = None,
    amount: Decimal | None = None,
) -> TransactionCategory:
    is_sell = side is not None and TradeSide(side) == TradeSide.SELL

    match transaction_type:
        case TransactionType.TRADE | TransactionType.MARGIN_TRADE:
            # Sells realize a gain or loss, buys establish cost basis.
            return TransactionCategory.TAXABLE_INCOME if is_sell else TransactionCategory.COST_BASIS_ADJUSTMENT
        case (
            TransactionType.MARGIN_SETTLEMENT
            | TransactionType.STAKING_REWARD
            | TransactionType.EARN_REWARD
            | TransactionType.CREDIT
            | TransactionType.AIRDROP
            | TransactionType.FORK
        ):
            return TransactionCategory.TAXABLE_INCOME
        case (
            TransactionType.DEPOSIT
            | TransactionType.WITHDRAWAL
            | TransactionType.TRANSFER
            | TransactionType.STAKING_DEPOSIT
            | TransactionType.STAKING_WITHDRAWAL
            | TransactionType.EARN_ALLOCATION
            | TransactionType.SPEND
            | TransactionType.RECEIVE
        ):
            return TransactionCategory.NON_TAXABLE
        case TransactionType.ROLLOVER | TransactionType.FEE:
            return TransactionCategory.FEE
        case TransactionType.NFT_TRADE:
            if is_sell or (amount is not None and amount > 0):
                return TransactionCategory.TAXABLE_INCOME
            return TransactionCategory.NON_TAXABLE
        case TransactionType.ADJUSTMENT:
            return TransactionCategory.COST_BASIS_ADJUSTMENT
        case _:
            assert_never(transaction_type)


def classify(
    raw_type: str,
    raw_subtype: str | None = None,
    side: TradeSide | str | None = None,
    amount: Decimal | None = None,
) -> Classification:
    transaction_type = map_kraken_ledger_type(raw_type, raw_subtype)
    return Classification(transaction_type, categorize_transaction(transaction_type, side, amount))


def normalize_asset(asset: str) -> AssetId:
    code = asset.strip().upper()
    if code in ASSET_ALIASES:
        return AssetId(ASSET_ALIASES[code])
    if len(code) == 4 and code[0] in "XZ":
        code = code[1:]
    return AssetId(ASSET_ALIASES.get(code, code))


def is_reportable_asset(asset: str) -> bool:
    code = asset.strip().upper()
    stripped = code[1:] if code[:1] in ("X", "Z") else code
    candidates = {code, stripped, normalize_asset(code)}
    return candidates.isdisjoint(FIAT_CURRENCIES)


def parse_pair(pair: str) -> tuple[str, str]:
    """Split a Kraken pair such as XXBTZEUR, XBTEUR or XBT/EUR into (base, quote)."""
    if "/" in pair:
        base, _, quote = pair.partition("/")
        return base, quote

    code = pair.upper()
    for quote in QUOTE_CURRENCIES:
        for suffix in (f"Z{quote}", f"X{quote}", quote):
            if code.endswith(suffix) and len(code) > len(suffix):
                base = code[: -len(suffix)]
                if suffix != quote and len(base) < 3:
                    continue
                return base, quote

    # Rough fallback for pairs with unknown quotes.
    mid = len(code) // 2
    return code[:mid], code[mid:]

# src/xramp/application/conversion.py
"""
Conversion Calculator - Tiered USD → USDT Pricing

This module contains the pricing rules for the service: a USD amount is mapped
onto a tier, the tier rate is applied and the USDT amount is truncated to
cents so the fee can never drop below the tier's nominal margin.

Files that USE this module:
- xramp.application.payment_service (quotes for new card payments)
- xramp.application.market_rate (market comparison of a quote)
- xramp.adapters.telegram.handlers (/tiers, /quote)
- tests.test_conversion (unit tests)

Files that this module USES:
- xramp.domain.models (ConversionTier, ConversionQuote, TierInfo)
- xramp.domain.errors (OutOfRangeError, NoTierError, MarginViolationError)
- xramp.config (settings for transaction limits and minimum margin)
"""
from __future__ import annotations  # Enable postponed evaluation of annotations

import logging  # Standard library for logging messages and errors
from decimal import Decimal  # Exact money arithmetic
from typing import Any, List, Optional, Sequence  # Type hints

from xramp.config import settings  # Conversion limits and margin
from xramp.domain.errors import (
    MarginViolationError,
    NoTierError,
    OutOfRangeError,
    TierConfigurationError,
)
from xramp.domain.models import (
    ConversionQuote,
    ConversionTier,
    TierInfo,
    to_decimal,
    truncate_cents,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
EXAMPLE_OFFSET = Decimal("50")

# Fixed rate tiers, ascending and contiguous
DEFAULT_TIERS: tuple = (
    ConversionTier(name="Starter", min_usd=Decimal("0"), max_usd=Decimal("100"), rate=Decimal("0.85")),
    ConversionTier(name="Basic", min_usd=Decimal("100"), max_usd=Decimal("250"), rate=Decimal("0.88")),
    ConversionTier(name="Standard", min_usd=Decimal("250"), max_usd=Decimal("500"), rate=Decimal("0.90")),
    ConversionTier(name="Premium", min_usd=Decimal("500"), max_usd=Decimal("1000"), rate=Decimal("0.91")),
    ConversionTier(name="VIP", min_usd=Decimal("1000"), max_usd=None, rate=Decimal("0.92")),
)


def _check_tier_table(tiers: Sequence[ConversionTier], min_usd: Decimal, max_usd: Decimal) -> None:
    """
    Verify the tier table partitions [min_usd, max_usd].

    Raises:
        TierConfigurationError: On gaps, overlaps, bad rates or a bounded last tier
    """
    if not tiers:
        raise TierConfigurationError("Tier table is empty")
    if tiers[0].min_usd > min_usd:
        raise TierConfigurationError(
            f"First tier starts at {tiers[0].min_usd}, above the minimum transaction {min_usd}"
        )
    for prev, curr in zip(tiers, tiers[1:]):
        if prev.max_usd is None or prev.max_usd != curr.min_usd:
            raise TierConfigurationError(
                f"Tiers {prev.name} and {curr.name} are not contiguous"
            )
    last = tiers[-1]
    if last.max_usd is not None and last.max_usd <= max_usd:
        raise TierConfigurationError(
            f"Last tier {last.name} ends at {last.max_usd} and does not cover {max_usd}"
        )
    for tier in tiers:
        if not (Decimal("0") < tier.rate <= Decimal("1")):
            raise TierConfigurationError(f"Tier {tier.name} has invalid rate {tier.rate}")


class ConversionCalculator:
    """
    Pure pricing service: no I/O, deterministic for identical input.
    """

    def __init__(
        self,
        tiers: Sequence[ConversionTier] = DEFAULT_TIERS,
        min_transaction: Any = Decimal("10"),
        max_transaction: Any = Decimal("10000"),
        min_profit_margin: Any = Decimal("0.08"),
    ):
        """
        Initialize calculator with a tier table and limits.

        Args:
            tiers: Contiguous, ascending tiers covering the transaction range
            min_transaction: Smallest accepted USD amount (inclusive)
            max_transaction: Largest accepted USD amount (inclusive)
            min_profit_margin: Minimum fee as a fraction of the USD amount (0.08 = 8%)

        Raises:
            TierConfigurationError: If the tier table does not cover the range
        """
        self.min_transaction = to_decimal(min_transaction)
        self.max_transaction = to_decimal(max_transaction)
        self.min_profit_margin = to_decimal(min_profit_margin)
        self.tiers: tuple = tuple(sorted(tiers, key=lambda t: t.min_usd))
        _check_tier_table(self.tiers, self.min_transaction, self.max_transaction)

    def _find_tier(self, usd_amount: Decimal) -> Optional[ConversionTier]:
        for tier in self.tiers:
            if tier.contains(usd_amount):
                return tier
        return None

    def calculate_conversion(self, usd_amount: Any) -> ConversionQuote:
        """
        Calculate USDT conversion with guaranteed rates.

        Args:
            usd_amount: Amount in USD (Decimal, int, float or numeric string)

        Returns:
            ConversionQuote for the amount

        Raises:
            InvalidAmountError: If the amount is not numeric
            OutOfRangeError: If the amount is outside [min_transaction, max_transaction]
            NoTierError: If no tier covers the amount (tier table fault)
            MarginViolationError: If the fee is below the minimum margin (tier table fault)
        """
        amount = to_decimal(usd_amount)
        if amount < self.min_transaction or amount > self.max_transaction:
            raise OutOfRangeError(
                f"Amount must be between ${self.min_transaction} and ${self.max_transaction}"
            )

        tier = self._find_tier(amount)
        if tier is None:
            logger.error("No conversion tier matches in-range amount %s", amount)
            raise NoTierError(f"No conversion tier for amount {amount}")

        usdt_amount = truncate_cents(amount * tier.rate)
        fee_amount = amount - usdt_amount
        fee_ratio = fee_amount / amount

        if fee_ratio < self.min_profit_margin:
            logger.error(
                "Margin violation: tier=%s amount=%s fee_ratio=%s min=%s",
                tier.name, amount, fee_ratio, self.min_profit_margin,
            )
            raise MarginViolationError(
                f"Fee {fee_ratio * HUNDRED:.2f}% below minimum margin for tier {tier.name}"
            )

        quote = ConversionQuote(
            usd_amount=amount,
            usdt_amount=usdt_amount,
            rate=tier.rate,
            fee_amount=fee_amount,
            fee_percentage=truncate_cents(fee_ratio * HUNDRED),
            tier_name=tier.name,
        )
        logger.debug(
            "Conversion calculated: usd=%s usdt=%s tier=%s fee=%s (%s%%)",
            quote.usd_amount, quote.usdt_amount, quote.tier_name,
            quote.fee_amount, quote.fee_percentage,
        )
        return quote

    def get_tier_info(self, usd_amount: Any) -> Optional[ConversionTier]:
        """
        Get tier information for an amount.

        Returns:
            Matching tier, or None if no tier covers the amount
        """
        return self._find_tier(to_decimal(usd_amount))

    def list_tiers(self) -> List[TierInfo]:
        """
        Get all tiers with a worked example each (tier floor + $50).

        Returns:
            List of TierInfo in ascending order
        """
        result = []
        for tier in self.tiers:
            pay = tier.min_usd + EXAMPLE_OFFSET
            result.append(TierInfo(
                name=tier.name,
                min_usd=tier.min_usd,
                max_usd=tier.max_usd,
                rate=tier.rate,
                example_pay=pay,
                example_receive=truncate_cents(pay * tier.rate),
            ))
        return result


def build_calculator(cfg=None) -> ConversionCalculator:
    """Calculator with the default tier table and limits from settings."""
    cfg = cfg or settings
    return ConversionCalculator(
        tiers=DEFAULT_TIERS,
        min_transaction=cfg.min_transaction_usd,
        max_transaction=cfg.max_transaction_usd,
        min_profit_margin=cfg.min_profit_margin,
    )


# Global calculator instance
calculator = build_calculator()

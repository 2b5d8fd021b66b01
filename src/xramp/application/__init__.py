# src/xramp/application/__init__.py
"""
Application Layer - Use Cases and Services

This package contains application services that orchestrate domain logic.
External systems are reached only through adapter interfaces.
"""

from xramp.application.conversion import ConversionCalculator, DEFAULT_TIERS, calculator
from xramp.application.market_rate import FeedChain, MarketRateCache
from xramp.application.payment_service import CardPayment, Page, PaymentService
from xramp.application.reconciler import (
    ReconcileResult,
    ReconcileStatus,
    WebhookReconciler,
    WebhookResponse,
)
from xramp.application.state_machine import Evidence, TransactionStateMachine, can_transition
from xramp.application.stats import StatisticsAggregator

__all__ = [
    "ConversionCalculator",
    "DEFAULT_TIERS",
    "calculator",
    "FeedChain",
    "MarketRateCache",
    "CardPayment",
    "Page",
    "PaymentService",
    "ReconcileResult",
    "ReconcileStatus",
    "WebhookReconciler",
    "WebhookResponse",
    "Evidence",
    "TransactionStateMachine",
    "can_transition",
    "StatisticsAggregator",
]

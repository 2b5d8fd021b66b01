# src/xramp/adapters/__init__.py
"""
Adapters Layer - External Interfaces

This package contains all adapters for external systems:
- Providers (market rate feeds)
- Payments (card capture, on-ramp signatures)
- Transfer (USDT withdrawal)
- Persistence (transaction storage)
- Notifications (status fan-out)
- Formatting (operator messages)
- Telegram (operator bot)
"""

__all__ = []

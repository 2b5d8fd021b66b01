# src/xramp/__init__.py
"""
XRamp - USD to USDT Payment Engine

Quotes card and on-ramp payments against a tiered pricing schedule, tracks
each transaction through its lifecycle (driven by synchronous confirmation
and provider webhooks) and dispatches the USDT transfer.
"""

__version__ = "0.1.0"

# src/xramp/shared/validators.py
"""
Input Validation Utilities - Wallet Addresses and Configuration Values

This module provides input validation functions for the engine:
- Wallet address format checks per network family
- Telegram bot token / chat id checks used by settings

Address checks are format-only: prefix and length after trimming whitespace.
Checksums and on-chain existence are not verified.

Files that USE this module:
- xramp.config.settings (uses validation functions in Settings field validators)
- xramp.application.payment_service (validates wallet addresses on order creation)
- xramp.application.state_machine (re-validates the address before dispatch)
- xramp.adapters.transfer.* (simulated and Binance executors)

Files that this module USES:
- xramp.domain.models (Network, AddressValidation)
"""
import re
from typing import Any, Optional

from xramp.domain.errors import UnsupportedNetworkError
from xramp.domain.models import AddressValidation, Network

TRON_PREFIX = "T"
TRON_LENGTH = 34
EVM_PREFIX = "0x"
EVM_LENGTH = 42

EXPLORER_URLS = {
    Network.TRC20: "https://tronscan.org/#/transaction/{}",
    Network.ERC20: "https://etherscan.io/tx/{}",
    Network.BEP20: "https://bscscan.com/tx/{}",
}


def validate_wallet_address(address: Any, network: Any) -> AddressValidation:
    """
    Validate a USDT wallet address for the given network.

    Args:
        address: Wallet address as entered by the user
        network: Network name or Network (aliases like "tron" and "bsc" accepted)

    Returns:
        AddressValidation with the trimmed address and an error message when invalid
    """
    if not isinstance(address, str) or not address.strip():
        return AddressValidation(valid=False, normalized_address="", error="Invalid wallet address format")

    normalized = address.strip()
    try:
        net = Network.parse(network)
    except UnsupportedNetworkError:
        return AddressValidation(
            valid=False,
            normalized_address=normalized,
            error="Unsupported network. Use TRC20, ERC20, or BEP20.",
        )

    if net.address_family == "tron":
        if normalized.startswith(TRON_PREFIX) and len(normalized) == TRON_LENGTH:
            return AddressValidation(valid=True, normalized_address=normalized, network=net)
        error = f"Invalid {net.value} address. Must start with T and be 34 characters."
    else:
        if normalized.startswith(EVM_PREFIX) and len(normalized) == EVM_LENGTH:
            return AddressValidation(valid=True, normalized_address=normalized, network=net)
        error = f"Invalid {net.value} address. Must start with 0x and be 42 characters."

    return AddressValidation(valid=False, normalized_address=normalized, network=net, error=error)


def is_valid_wallet_address(address: Any, network: Any) -> bool:
    return validate_wallet_address(address, network).valid


def explorer_url(tx_hash: str, network: Any) -> Optional[str]:
    """
    Build a block explorer link for a transaction hash.

    Returns:
        Explorer URL, or None for an unknown network
    """
    try:
        net = Network.parse(network)
    except UnsupportedNetworkError:
        return None
    return EXPLORER_URLS[net].format(tx_hash)


def validate_chat_id(chat_id: str) -> bool:
    """
    Validate Telegram channel/chat ID format.

    Args:
        chat_id: Chat ID to validate

    Returns:
        True if valid, False otherwise
    """
    if not chat_id:
        return False

    # Chat IDs can be:
    # - @channelname (public channels)
    # - -1001234567890 (private channels/chats)
    # - 123456789 (user IDs)
    if chat_id.startswith('@'):
        return bool(len(chat_id) > 1 and re.match(r'^@[a-zA-Z0-9_]+$', chat_id))
    elif chat_id.startswith('-'):
        return bool(re.match(r'^-\d+$', chat_id))
    return bool(re.match(r'^\d+$', chat_id))


def validate_bot_token(token: str) -> bool:
    """
    Validate Telegram bot token format.

    Args:
        token: Bot token to validate

    Returns:
        True if valid, False otherwise
    """
    if not token:
        return False

    # Bot tokens should be in format: 123456789:ABCDEFghijklmnopQRSTUVwxyz
    pattern = r'^\d{8,10}:[A-Za-z0-9_-]{35}$'
    return bool(re.match(pattern, token))

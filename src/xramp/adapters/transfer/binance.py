# src/xramp/adapters/transfer/binance.py
"""
Binance Withdrawal Executor - Real USDT Transfers

Sends USDT from the exchange hot wallet to a user address using Binance's
signed REST API:
- GET  /api/v3/account                   (free USDT balance check)
- POST /sapi/v1/capital/withdraw/apply   (withdrawal)
- GET  /sapi/v1/capital/withdraw/history (withdrawal status)

The API key needs the "Enable Withdrawals" permission and the account must hold
enough USDT. Exchange errors are mapped onto the typed TransferError family.

Files that USE this module:
- xramp.adapters.transfer (build_transfer_executor)
- tests.test_transfer (unit tests with mocked requests)

Files that this module USES:
- xramp.config (settings for keys, base URL and HTTP timeout)
- xramp.domain.errors (TransferError family)
- xramp.shared.validators (address format, explorer links)
"""
import hashlib
import hmac
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from xramp.adapters.transfer.base import TransferExecutor
from xramp.config import settings
from xramp.domain.errors import (
    InsufficientBalanceError,
    InvalidAddressError,
    PermissionDeniedError,
    TransferError,
    TransientNetworkError,
)
from xramp.domain.models import Network, TransferResult
from xramp.shared.validators import explorer_url, validate_wallet_address

log = logging.getLogger(__name__)

ASSET = "USDT"
RECV_WINDOW_MS = 5000

# Binance network codes for USDT withdrawals
BINANCE_NETWORKS = {
    Network.TRC20: "TRX",
    Network.ERC20: "ETH",
    Network.BEP20: "BSC",
}

# Error codes that mean the key cannot trade/withdraw
PERMISSION_CODES = {-1002, -2014, -2015}

WITHDRAW_STATUS = {
    0: "email_sent",
    1: "cancelled",
    2: "awaiting_approval",
    3: "rejected",
    4: "processing",
    5: "failed",
    6: "completed",
}


class BinanceTransferExecutor(TransferExecutor):
    """Signed Binance REST client for USDT withdrawals."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or settings.binance_api_key
        self.api_secret = api_secret or settings.binance_api_secret
        self.base_url = (base_url or settings.binance_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        if not (self.api_key and self.api_secret):
            raise ValueError("Binance API key and secret are required")

    def _sign(self, params: Dict[str, Any]) -> Dict[str, Any]:
        signed = dict(params)
        signed["timestamp"] = int(time.time() * 1000)
        signed["recvWindow"] = RECV_WINDOW_MS
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self.api_secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        return signed

    @staticmethod
    def _map_error(status_code: int, code: Optional[int], message: str) -> TransferError:
        lowered = message.lower()
        if code in PERMISSION_CODES or status_code in (401, 403) or "withdrawal not enabled" in lowered:
            return PermissionDeniedError(
                "Withdrawal permission not enabled on API key. Enable it in Binance API settings."
            )
        if "insufficient" in lowered:
            return InsufficientBalanceError("Insufficient USDT balance in system wallet.")
        if "address" in lowered:
            return InvalidAddressError("Invalid wallet address. Please check and try again.")
        if status_code == 429 or status_code >= 500:
            return TransientNetworkError(f"Binance unavailable (HTTP {status_code}): {message}")
        return TransferError(f"USDT transfer failed: {message}")

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform a signed request.

        Raises:
            TransientNetworkError: On timeouts and connection failures
            TransferError: (or a subclass) for exchange-reported errors
        """
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method,
                url,
                params=self._sign(params or {}),
                headers={"X-MBX-APIKEY": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            log.error("Binance %s %s timeout after %s seconds", method, path, self.timeout)
            raise TransientNetworkError(f"Binance timeout after {self.timeout}s")
        except requests.exceptions.ConnectionError as e:
            log.error("Binance %s %s connection failed: %s", method, path, e)
            raise TransientNetworkError(f"Binance connection failed: {e}")
        except requests.exceptions.RequestException as e:
            log.error("Binance %s %s request failed: %s", method, path, e)
            raise TransferError(f"Binance request failed: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            code = data.get("code") if isinstance(data, dict) else None
            message = (data.get("msg") if isinstance(data, dict) else None) or resp.text or "unknown error"
            log.error("Binance %s %s failed: HTTP %s code=%s msg=%s",
                      method, path, resp.status_code, code, message)
            raise self._map_error(resp.status_code, code, message)

        if data is None:
            raise TransferError(f"Binance {path} returned invalid JSON")
        return data

    def get_usdt_balance(self) -> Decimal:
        """Free (unlocked) USDT balance of the hot wallet."""
        data = self._request("GET", "/api/v3/account")
        for balance in data.get("balances", []):
            if balance.get("asset") == ASSET:
                try:
                    return Decimal(str(balance.get("free", "0")))
                except InvalidOperation:
                    raise TransferError(f"Unreadable USDT balance: {balance.get('free')!r}")
        return Decimal("0")

    def send(self, address: str, amount: Decimal, network: Network,
             reference: Optional[str] = None) -> TransferResult:
        """
        Withdraw USDT to a user wallet.

        Raises:
            InvalidAddressError: If the address does not match the network's format
            InsufficientBalanceError: If the free balance is below the amount
            PermissionDeniedError: If the key is not allowed to withdraw
            TransientNetworkError: On timeouts and connection failures
            TransferError: For any other exchange error
        """
        validation = validate_wallet_address(address, network)
        if not validation.valid:
            raise InvalidAddressError(validation.error)
        net = validation.network

        free = self.get_usdt_balance()
        if free < amount:
            raise InsufficientBalanceError(
                f"Insufficient USDT balance. Available: {free} USDT, Required: {amount} USDT"
            )

        log.info("Initiating USDT transfer: %s USDT to %s via %s", amount, validation.normalized_address, net.value)
        params = {
            "coin": ASSET,
            "address": validation.normalized_address,
            "amount": str(amount),
            "network": BINANCE_NETWORKS[net],
        }
        # Client id makes a retried withdrawal idempotent on the exchange side
        if reference:
            params["withdrawOrderId"] = reference
        data = self._request("POST", "/sapi/v1/capital/withdraw/apply", params)
        withdrawal_id = data.get("id")
        if not withdrawal_id:
            raise TransferError(f"Binance withdrawal response missing id: {data!r}")

        log.info("USDT transfer initiated, withdrawal id=%s", withdrawal_id)
        return TransferResult(
            tx_hash=str(withdrawal_id),
            status="pending",
            is_simulated=False,
            network=net,
            explorer_url=explorer_url(str(withdrawal_id), net),
        )

    def withdrawal_status(self, withdrawal_id: str) -> Dict[str, Any]:
        """
        Look up a withdrawal in the exchange history.

        Returns:
            Dict with 'status' (e.g. "processing", "completed", "not_found") and,
            when known, the on-chain 'tx_hash'
        """
        history = self._request("GET", "/sapi/v1/capital/withdraw/history", {"coin": ASSET})
        for item in history or []:
            if str(item.get("id")) == str(withdrawal_id):
                return {
                    "status": WITHDRAW_STATUS.get(item.get("status"), "unknown"),
                    "tx_hash": item.get("txId"),
                    "amount": item.get("amount"),
                    "network": item.get("network"),
                }
        return {"status": "not_found"}

# tests/test_transfer.py
"""
Transfer Executor Tests - Simulated and Binance Withdrawals

Files that USE this module:
- pytest (test runner executes these tests)

Files that this module USES:
- xramp.adapters.transfer (executors and factory)
- unittest.mock (Mock and patch for requests)
"""
from decimal import Decimal  # Exact amounts in assertions
from unittest.mock import Mock, patch  # Mock objects and patching for testing without real API calls

import pytest  # Testing framework for writing and running tests
import requests  # HTTP library (used for mocking responses)

from xramp.adapters.transfer import (  # Transfer executors to test
    BinanceTransferExecutor,
    SimulatedTransferExecutor,
    build_transfer_executor,
)
from xramp.domain.errors import (  # Expected exceptions
    InsufficientBalanceError,
    InvalidAddressError,
    PermissionDeniedError,
    TransferError,
    TransientNetworkError,
)
from xramp.domain.models import Network  # Network enum

from tests.conftest import EVM_ADDRESS, TRON_ADDRESS  # Valid wallet addresses


def _resp(status_code=200, payload=None):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = ""
    return resp


BALANCE = _resp(200, {"balances": [{"asset": "BTC", "free": "1"}, {"asset": "USDT", "free": "1000.00"}]})


@pytest.fixture
def binance():
    return BinanceTransferExecutor(api_key="key", api_secret="secret", base_url="https://api.binance.com", timeout=5)


class TestSimulatedTransfer:
    def test_deterministic_hash(self):
        executor = SimulatedTransferExecutor()
        a = executor.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20)
        b = executor.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20)
        assert a.tx_hash == b.tx_hash
        assert a.tx_hash.startswith("SIMULATED_")
        assert len(a.tx_hash) == len("SIMULATED_") + 32
        assert a.is_simulated
        assert a.explorer_url == f"https://tronscan.org/#/transaction/{a.tx_hash}"

    def test_different_amount_different_hash(self):
        executor = SimulatedTransferExecutor()
        assert (executor.send(EVM_ADDRESS, Decimal("1"), "ERC20").tx_hash
                != executor.send(EVM_ADDRESS, Decimal("2"), "ERC20").tx_hash)

    def test_invalid_address(self):
        with pytest.raises(InvalidAddressError):
            SimulatedTransferExecutor().send(EVM_ADDRESS, Decimal("1"), Network.TRC20)


class TestBinanceTransfer:
    def test_requires_credentials(self):
        with patch("xramp.adapters.transfer.binance.settings") as mock_settings:
            mock_settings.binance_api_key = ""
            mock_settings.binance_api_secret = ""
            with pytest.raises(ValueError):
                BinanceTransferExecutor()

    def test_sign_adds_signature(self, binance):
        signed = binance._sign({"coin": "USDT"})
        assert set(signed) == {"coin", "timestamp", "recvWindow", "signature"}
        assert len(signed["signature"]) == 64

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_send_success(self, mock_request, binance):
        mock_request.side_effect = [BALANCE, _resp(200, {"id": "wd_1"})]
        result = binance.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20, reference="tx_1")

        assert result.tx_hash == "wd_1"
        assert result.status == "pending"
        assert not result.is_simulated
        method, url = mock_request.call_args.args
        params = mock_request.call_args.kwargs["params"]
        assert method == "POST"
        assert url == "https://api.binance.com/sapi/v1/capital/withdraw/apply"
        assert params["network"] == "TRX"
        assert params["amount"] == "405.00"
        assert params["withdrawOrderId"] == "tx_1"
        assert mock_request.call_args.kwargs["headers"] == {"X-MBX-APIKEY": "key"}

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_insufficient_balance_checked_first(self, mock_request, binance):
        mock_request.return_value = _resp(200, {"balances": [{"asset": "USDT", "free": "10"}]})
        with pytest.raises(InsufficientBalanceError, match="Available: 10"):
            binance.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20)
        assert mock_request.call_count == 1

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_invalid_address_never_calls_exchange(self, mock_request, binance):
        with pytest.raises(InvalidAddressError):
            binance.send("T123", Decimal("1"), Network.TRC20)
        mock_request.assert_not_called()

    @pytest.mark.parametrize("status,payload,error", [
        (401, {"code": -2015, "msg": "Invalid API-key, IP, or permissions for action."}, PermissionDeniedError),
        (400, {"code": -4019, "msg": "Withdrawal not enabled"}, PermissionDeniedError),
        (400, {"code": -4026, "msg": "Insufficient balance"}, InsufficientBalanceError),
        (400, {"code": -4007, "msg": "Invalid address"}, InvalidAddressError),
        (503, {"code": -1001, "msg": "Internal error"}, TransientNetworkError),
        (429, {"code": -1003, "msg": "Too many requests"}, TransientNetworkError),
        (400, {"code": -1100, "msg": "Illegal characters"}, TransferError),
    ])
    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_error_mapping(self, mock_request, binance, status, payload, error):
        mock_request.side_effect = [BALANCE, _resp(status, payload)]
        with pytest.raises(error):
            binance.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20)

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_timeout_is_transient(self, mock_request, binance):
        mock_request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(TransientNetworkError):
            binance.get_usdt_balance()

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_missing_withdrawal_id(self, mock_request, binance):
        mock_request.side_effect = [BALANCE, _resp(200, {})]
        with pytest.raises(TransferError, match="missing id"):
            binance.send(TRON_ADDRESS, Decimal("405.00"), Network.TRC20)

    @patch("xramp.adapters.transfer.binance.requests.request")
    def test_withdrawal_status(self, mock_request, binance):
        mock_request.return_value = _resp(200, [{"id": "wd_1", "status": 6, "txId": "0xabc", "amount": "405"}])
        assert binance.withdrawal_status("wd_1")["status"] == "completed"
        assert binance.withdrawal_status("wd_1")["tx_hash"] == "0xabc"
        assert binance.withdrawal_status("wd_2") == {"status": "not_found"}


class TestBuildTransferExecutor:
    def test_simulated_without_keys(self):
        cfg = Mock(binance_configured=False)
        assert isinstance(build_transfer_executor(cfg), SimulatedTransferExecutor)

    def test_binance_with_keys(self):
        cfg = Mock(binance_configured=True, binance_api_key="k", binance_api_secret="s",
                   binance_base_url="https://api.binance.com", http_timeout_seconds=10)
        assert isinstance(build_transfer_executor(cfg), BinanceTransferExecutor)

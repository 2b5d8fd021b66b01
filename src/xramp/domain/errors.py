# src/xramp/domain/errors.py
"""
Domain Errors - Business Logic Exceptions

This module defines domain-specific exceptions that represent
business rule violations and domain errors.

The hierarchy follows the four error families the engine distinguishes:
- InputError: rejected synchronously, message is safe to show to the user
- ConsistencyError: tier table / configuration faults, logged at ERROR
- StateError: lifecycle conflicts, answered with success-equivalent webhook responses
- ExternalServiceError: failures of rate feeds, payment capture and transfer dispatch
"""


class DomainError(Exception):
    """Base exception for domain errors."""
    pass


# --- Input errors ---

class InputError(DomainError):
    """Raised when caller-supplied input is rejected."""
    pass


class OutOfRangeError(InputError):
    """Raised when a USD amount is outside the allowed transaction range."""
    pass


class InvalidAmountError(InputError):
    """Raised when an amount cannot be parsed as a number."""
    pass


class UnsupportedNetworkError(InputError):
    """Raised when a blockchain network is not one of the supported families."""
    pass


# --- Consistency errors ---

class ConsistencyError(DomainError):
    """Raised when internal configuration (tier table, margins) is inconsistent."""
    pass


class NoTierError(ConsistencyError):
    """Raised when no conversion tier matches an in-range amount."""
    pass


class MarginViolationError(ConsistencyError):
    """Raised when a computed fee falls below the minimum profit margin."""
    pass


class TierConfigurationError(ConsistencyError):
    """Raised when a tier table is not contiguous, ordered or bounded correctly."""
    pass


# --- State errors ---

class StateError(DomainError):
    """Raised when a lifecycle operation conflicts with the current state."""
    pass


class AlreadyTerminalError(StateError):
    """Raised when a transition is requested on a completed, failed or cancelled transaction."""

    def __init__(self, transaction_id: str, status: str):
        super().__init__(f"Transaction {transaction_id} is already terminal ({status})")
        self.transaction_id = transaction_id
        self.status = status


class InvalidTransitionError(StateError):
    """Raised when the target status is not reachable from the current status."""

    def __init__(self, transaction_id: str, current: str, target: str):
        super().__init__(f"Invalid transition for {transaction_id}: {current} → {target}")
        self.transaction_id = transaction_id
        self.current = current
        self.target = target


class TransactionNotFoundError(StateError):
    """Raised when a transaction reference cannot be resolved."""
    pass


class ImmutableFieldError(StateError):
    """Raised when a write-once field (transaction hash) would be overwritten."""
    pass


class DuplicateProviderPaymentIdError(StateError):
    """Raised when a provider payment id is already bound to another transaction."""
    pass


# --- External service errors ---

class ExternalServiceError(DomainError):
    """Raised when an external collaborator fails."""
    pass


class RateFeedError(ExternalServiceError):
    """Raised when a market rate feed cannot deliver a usable rate."""
    pass


class SignatureError(ExternalServiceError):
    """Raised when a webhook signature cannot be verified."""
    pass


class PaymentCaptureError(ExternalServiceError):
    """Raised when the payment provider rejects or fails a capture operation."""
    pass


class TransferError(ExternalServiceError):
    """Raised when a stablecoin transfer cannot be dispatched."""
    retryable = False


class InsufficientBalanceError(TransferError):
    """Raised when the hot wallet balance is below the requested amount."""
    pass


class PermissionDeniedError(TransferError):
    """Raised when the exchange API key is not allowed to withdraw."""
    pass


class TransientNetworkError(TransferError):
    """Raised on timeouts and connection failures; safe to retry."""
    retryable = True


class InvalidAddressError(InputError, TransferError):
    """Raised when a wallet address does not match its network's format."""
    pass

"""Service error hierarchy for billing, queueing and fleet operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- BillingError: Wallet and voucher operations rejected for the caller
- QueueError: Job lookup and processing failures
- FleetError: GPU fleet provider failures, handled inside the controller
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


# Billing errors (surfaced to the caller, never retried)
class BillingError(ServiceError):
    """Base exception for wallet ledger errors."""

    pass


class InsufficientCredits(BillingError):
    """Available credits do not cover the requested amount."""

    def __init__(self, user_id: str, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits for user {user_id}: required {required}, available {available}"
        )


class WalletNotFound(BillingError):
    """Deduction against a user without a wallet."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Wallet not found for user {user_id}")


class VoucherError(BillingError):
    """Base exception for voucher redemption errors."""

    pass


class InvalidVoucher(VoucherError):
    """Voucher code does not exist or is inactive."""

    pass


class VoucherNotYetValid(VoucherError):
    """Voucher validity window has not started."""

    pass


class VoucherExpired(VoucherError):
    """Voucher validity window has ended."""

    pass


class VoucherLimitReached(VoucherError):
    """Voucher has been redeemed max_uses times."""

    pass


class VoucherAlreadyUsed(VoucherError):
    """User already redeemed this voucher."""

    pass


# Queue errors
class QueueError(ServiceError):
    """Base exception for job queue errors."""

    pass


class JobNotFound(QueueError):
    """Job record expired or was deleted."""

    pass


class SubmissionInProgress(QueueError):
    """Another submission holds the idempotency key but has not enqueued its job yet."""

    def __init__(self, idempotency_key: str, job_id: str):
        self.idempotency_key = idempotency_key
        self.job_id = job_id
        super().__init__(f"Submission {idempotency_key} in progress as job {job_id}")


class JobProcessingError(QueueError):
    """Tool processor failed while handling a job."""

    pass


# Fleet errors (handled by the controller, never surfaced to submitters)
class FleetError(ServiceError):
    """Base exception for GPU fleet errors."""

    pass


class FleetProviderError(FleetError):
    """Fleet provider API call failed."""

    retryable: bool = False


class FleetProviderTransientError(FleetProviderError):
    """Network timeout, rate limit (429) or provider unavailable (5xx)."""

    retryable = True


class FleetProviderPermanentError(FleetProviderError):
    """Authentication failure (401, 403) or missing configuration."""

    retryable = False


class FleetStartFailed(FleetError):
    """Fleet did not become healthy after a start request."""

    pass

from __future__ import annotations


class LedgerError(Exception):
    pass


class CleanupFailed(LedgerError):
    """User cleanup stopped at ``stage``; earlier stages stay applied (no rollback)."""

    def __init__(self, uid: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"cleanup of {uid} failed at {stage}: {cause}")
        self.uid = uid
        self.stage = stage
        self.cause = cause


class NotFoundError(LedgerError):
    pass


class OrderNotFound(NotFoundError):
    pass


class WithdrawalNotFound(NotFoundError):
    pass


class KycRequestNotFound(NotFoundError):
    pass


class InvalidStateTransition(LedgerError):
    pass


class InsufficientBalance(LedgerError):
    pass


class AchieverNotEligible(LedgerError):
    pass

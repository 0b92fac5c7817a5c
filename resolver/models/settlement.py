"""Acceptance and settlement result models."""

from dataclasses import dataclass
from enum import StrEnum


class AcceptanceOutcome(StrEnum):
    ACCEPTED = "ACCEPTED"
    CONFLICT = "CONFLICT"  # another resolver's acceptance landed first
    REJECTED = "REJECTED"  # 4xx other than 409
    FAILED = "FAILED"  # transport error, 5xx, ledger read failure
    SKIPPED = "SKIPPED"  # already processing/processed, or order taken


@dataclass(frozen=True)
class AcceptReceipt:
    transaction_hash: str
    block_number: int | None
    gas_used: int | None


@dataclass(frozen=True)
class AcceptResult:
    order_id: str
    outcome: AcceptanceOutcome
    accepted_price: str = ""
    receipt: AcceptReceipt | None = None
    status_code: int | None = None
    error_message: str = ""


class SettlementStage(StrEnum):
    PRECONDITION = "precondition"
    CONTACT = "contact"
    FUND_ACCOUNT = "fund_account"
    PAYOUT = "payout"
    PROOF = "proof"


class SettlementStatus(StrEnum):
    SETTLED = "SETTLED"
    PROOF_REJECTED = "PROOF_REJECTED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class PayoutReceipt:
    payout_id: str
    fund_account_id: str
    contact_id: str
    status: str
    utr: str | None
    fees: int
    tax: int


@dataclass(frozen=True)
class SettlementResult:
    order_id: str
    status: SettlementStatus
    stage: SettlementStage | None = None
    error_class: str = ""
    error_message: str = ""
    amount_paise: int = 0
    payout: PayoutReceipt | None = None

    @property
    def paid(self) -> bool:
        return self.payout is not None

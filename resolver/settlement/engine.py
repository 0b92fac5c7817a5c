"""Settlement: turn an on-chain acceptance into a UPI payout plus proof."""

import logging
import uuid
from collections.abc import Awaitable, Callable

from resolver.backend.coordinator import CoordinatorClient, CoordinatorError
from resolver.context import ResolverContext
from resolver.models.common import WEI_PER_UNIT, normalize_order_id, same_address
from resolver.models.order import Order
from resolver.models.settlement import (
    PayoutReceipt,
    SettlementResult,
    SettlementStage,
    SettlementStatus,
)
from resolver.payments.razorpayx import PaymentProviderError, RazorpayXClient
from resolver.reporting.formatters import format_payment_success

logger = logging.getLogger(__name__)


def to_minor_units(amount_wei: int) -> int:
    """18-decimal fixed-point rupees -> integer paise, rounding half up."""
    return (amount_wei * 100 + WEI_PER_UNIT // 2) // WEI_PER_UNIT


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


class SettlementEngine:
    """Drives contact -> fund account -> payout -> proof for one order.

    No automatic retries: a failed attempt returns a structured result and
    a later `settle` call (callback, sweep, operator) starts a new attempt
    with a new idempotency key.
    """

    def __init__(
        self,
        context: ResolverContext,
        read_order: Callable[[str], Awaitable[Order]],
        payments: RazorpayXClient,
        coordinator: CoordinatorClient,
        idempotency_key: Callable[[], str] = new_idempotency_key,
    ):
        self.context = context
        self.read_order = read_order
        self.payments = payments
        self.coordinator = coordinator
        self._idempotency_key = idempotency_key

    async def settle(self, order_id: str) -> SettlementResult:
        oid = normalize_order_id(order_id)
        records = self.context.settlements
        existing = records.payout_for(oid)
        if existing:
            logger.info("Order %s already paid out (%s), skipping settlement", oid, existing)
            return SettlementResult(
                order_id=oid, status=SettlementStatus.SKIPPED,
                error_message=f"payout {existing} already issued",
            )
        if not records.try_begin(oid):
            logger.info("Settlement for order %s already in progress", oid)
            return SettlementResult(
                order_id=oid, status=SettlementStatus.SKIPPED,
                error_message="settlement in progress",
            )
        try:
            return await self._settle(oid)
        finally:
            records.finish(oid)

    async def _settle(self, oid: str) -> SettlementResult:
        logger.info("Processing payment for order %s...", oid)
        try:
            order = await self.read_order(oid)
        except Exception as e:
            logger.error("Could not read order %s for settlement: %s", oid, e)
            return _failure(oid, SettlementStage.PRECONDITION, e)

        violation = self._check_preconditions(order)
        if violation:
            logger.error("Not settling order %s: %s", oid, violation)
            return SettlementResult(
                order_id=oid, status=SettlementStatus.ABORTED,
                stage=SettlementStage.PRECONDITION,
                error_class="PreconditionViolation", error_message=violation,
            )

        amount_paise = to_minor_units(order.amount)
        logger.info(
            "Payment details: order=%s amount_paise=%d recipient=%s",
            oid, amount_paise, order.recipient_upi,
        )

        try:
            contact = await self.payments.create_contact(oid)
        except Exception as e:
            return _failure(oid, SettlementStage.CONTACT, e, amount_paise)

        try:
            fund_account = await self.payments.create_fund_account(contact.id, order.recipient_upi)
        except Exception as e:
            return _failure(oid, SettlementStage.FUND_ACCOUNT, e, amount_paise)

        try:
            payout = await self.payments.create_payout(
                fund_account.id, amount_paise, oid, self._idempotency_key()
            )
        except Exception as e:
            return _failure(oid, SettlementStage.PAYOUT, e, amount_paise)

        receipt = PayoutReceipt(
            payout_id=payout.id,
            fund_account_id=payout.fund_account_id,
            contact_id=contact.id,
            status=payout.status,
            utr=payout.utr,
            fees=payout.fees,
            tax=payout.tax,
        )
        self.context.settlements.record_payout(oid, payout.id)
        logger.info(
            "\n%s",
            format_payment_success(
                oid, order.recipient_upi, amount_paise, receipt, self.context.resolver_address
            ),
        )

        if not await self.submit_proof(oid, payout.id):
            return SettlementResult(
                order_id=oid, status=SettlementStatus.PROOF_REJECTED,
                stage=SettlementStage.PROOF, error_class="ProofRejected",
                error_message="fulfillment endpoint rejected the payout proof",
                amount_paise=amount_paise, payout=receipt,
            )
        return SettlementResult(
            order_id=oid, status=SettlementStatus.SETTLED,
            amount_paise=amount_paise, payout=receipt,
        )

    def _check_preconditions(self, order: Order) -> str:
        if not order.accepted:
            return "order is not accepted yet"
        if order.fulfilled:
            return "order is already fulfilled"
        if not same_address(order.taker, self.context.resolver_address):
            return f"this resolver is not the taker (taker={order.taker})"
        if to_minor_units(order.amount) <= 0:
            return f"order amount {order.amount} rounds to zero paise"
        return ""

    async def submit_proof(self, order_id: str, transaction_id: str) -> bool:
        """Report the payout to the backend. Rejections are logged, not retried."""
        logger.info("Submitting proof for order %s (transaction %s)", order_id, transaction_id)
        try:
            response = await self.coordinator.fulfill_order(
                order_id, transaction_id, self.context.resolver_address
            )
        except CoordinatorError as e:
            logger.error(
                "Failed to submit proof: order=%s transaction=%s status=%s body=%s",
                order_id, transaction_id, e.status_code, e.body or e,
            )
            if e.status_code == 400:
                logger.error(
                    "Possible causes: payout verification failed, amount/status "
                    "mismatch, order not accepted on-chain, or invalid transaction "
                    "ID (%s)", transaction_id,
                )
            return False
        logger.info("Proof accepted for order %s: %s", order_id, response)
        return True


def _failure(
    oid: str, stage: SettlementStage, exc: Exception, amount_paise: int = 0
) -> SettlementResult:
    if isinstance(exc, PaymentProviderError):
        error_class = exc.error_class
    else:
        error_class = type(exc).__name__
    logger.error("Settlement of order %s failed at %s: %s: %s", oid, stage, error_class, exc)
    return SettlementResult(
        order_id=oid, status=SettlementStatus.FAILED, stage=stage,
        error_class=error_class, error_message=str(exc), amount_paise=amount_paise,
    )

"""Human-readable output for payments and daemon status."""

from decimal import Decimal

from web3 import Web3

from resolver.models.common import WEI_PER_UNIT, utc_now_iso
from resolver.models.settlement import PayoutReceipt

SEPARATOR = "=" * 80


def format_rupees(amount_paise: int) -> str:
    return f"₹{Decimal(amount_paise) / 100:.2f}"


def format_inr_amount(amount_wei: int) -> str:
    """Render an 18-decimal fixed-point INR amount."""
    return f"₹{Decimal(amount_wei) / WEI_PER_UNIT:.2f}"


def format_native_balance(balance_wei: int) -> str:
    """The resolver's gas balance in the chain's native token."""
    return f"{Web3.from_wei(balance_wei, 'ether')} ETH"


def format_payment_success(
    order_id: str,
    recipient_upi: str,
    amount_paise: int,
    payout: PayoutReceipt,
    resolver_address: str,
    processed_at: str | None = None,
) -> str:
    lines = [
        SEPARATOR,
        "PAYMENT SUCCESSFULLY COMPLETED",
        SEPARATOR,
        f"Order ID: {order_id}",
        f"Amount: {format_rupees(amount_paise)} ({amount_paise} paise)",
        f"Recipient UPI: {recipient_upi}",
        f"Payout ID: {payout.payout_id}",
        f"UTR/Transaction ID: {payout.utr or 'Processing...'}",
        f"Status: {payout.status.upper()}",
        f"Contact ID: {payout.contact_id or 'N/A'}",
        f"Fund Account ID: {payout.fund_account_id or 'N/A'}",
        f"Fees: {format_rupees(payout.fees)}",
        f"Tax: {format_rupees(payout.tax)}",
        f"Processed At: {processed_at or utc_now_iso()}",
        f"Processed By: Resolver Bot ({resolver_address})",
        SEPARATOR,
    ]
    return "\n".join(lines)


def format_status(state: dict, running: bool) -> str:
    icon = "🟢" if running else "🔴"
    lines = [
        f"{icon} Resolver {'running' if running else 'stopped'}",
        f"  PID: {state.get('pid', '?')}",
        f"  Resolver: {state.get('resolver', '?')}",
        f"  Mode: {state.get('mode', 'unknown')}",
        f"  Fell back to polling: {state.get('fell_back_to_polling', False)}",
        f"  Watermark: {state.get('watermark', '?')}",
        f"  Processing: {state.get('processing', 0)}",
        f"  Processed: {state.get('processed', 0)}",
        f"  Active auctions: {state.get('active_auctions', 0)}",
        f"  Stale-subscription errors: {state.get('stale_subscription_errors', 0)}",
        f"  Reconnects: {state.get('reconnects', 0)}",
        f"  Started: {state.get('started_at', '?')}",
        f"  Last update: {state.get('last_update', '?')}",
    ]
    return "\n".join(lines)

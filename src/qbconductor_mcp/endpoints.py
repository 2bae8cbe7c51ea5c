"""Conductor API endpoint paths.

QuickBooks Desktop resources live under ``/quickbooks-desktop``; end-user
and auth-session management sits at the API root.
"""

from enum import Enum

QBD_PREFIX = "/quickbooks-desktop"

END_USERS = "/end-users"
AUTH_SESSIONS = "/auth-sessions"
HEALTH_CHECK = f"{QBD_PREFIX}/utilities/health-check"

ACCOUNTS = f"{QBD_PREFIX}/accounts"
ACCOUNT_TAX_LINES = f"{QBD_PREFIX}/account-tax-lines"
BILLS = f"{QBD_PREFIX}/bills"
BILL_CHECK_PAYMENTS = f"{QBD_PREFIX}/bill-check-payments"
BILL_CREDIT_CARD_PAYMENTS = f"{QBD_PREFIX}/bill-credit-card-payments"

ACCOUNT_TYPES: tuple[str, ...] = (
    "bank",
    "accounts_payable",
    "accounts_receivable",
    "other_current_asset",
    "fixed_asset",
    "other_asset",
    "credit_card",
    "other_current_liability",
    "long_term_liability",
    "equity",
    "income",
    "cost_of_goods_sold",
    "expense",
    "other_income",
    "other_expense",
)


class PaymentType(str, Enum):
    """Bill payment methods, each with its own endpoint."""

    CHECK = "check"
    CREDIT_CARD = "credit_card"

    @property
    def label(self) -> str:
        return "Check" if self is PaymentType.CHECK else "Credit card"


def payment_endpoint(payment_type: PaymentType | str) -> str:
    """Get the collection endpoint for a payment type.

    Raises:
        ValueError: If the payment type is unknown.
    """
    payment_type = PaymentType(payment_type)
    if payment_type is PaymentType.CHECK:
        return BILL_CHECK_PAYMENTS
    return BILL_CREDIT_CARD_PAYMENTS


def item_endpoint(collection: str, item_id: str) -> str:
    """Build the path of a single record in a collection."""
    return f"{collection}/{item_id}"

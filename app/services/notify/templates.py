from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from html import escape

from app.services.ledger.aggregator import format_currency

LOGIN_URL = "https://plexcourses.com/login"
SIGNATURE = "<p>Thank you,<br/>The Plex Courses Team</p>"


@dataclass(frozen=True)
class Mail:
    subject: str
    html: str


def order_approved(*, customer_name: str, product: str, is_upgrade: bool, cashback_credited: bool) -> Mail:
    if is_upgrade:
        subject = "Your Package Upgrade is Complete!"
        body = f"Your upgrade to <strong>{escape(product.replace('Upgrade to: ', ''))}</strong> has been approved."
    else:
        subject = "Your Plex Courses Account is Activated!"
        body = "Your account has been approved and is now active. Please log in again to access your dashboard."
    cashback = "<p>A 10% cashback has been credited to your account balance.</p>" if cashback_credited else ""
    html = (
        f"<h1>Congratulations, {escape(customer_name)}!</h1><p>{body}</p>{cashback}"
        f'<p><a href="{LOGIN_URL}">Log in to Dashboard</a></p>'
    )
    return Mail(subject, html)


def order_rejected(*, is_upgrade: bool) -> Mail:
    if is_upgrade:
        return Mail(
            "Your Upgrade Request Was Not Approved",
            "<h1>Upgrade Not Approved</h1><p>Your upgrade request was not approved.</p>",
        )
    return Mail(
        "Your Account Request Was Not Approved",
        "<h1>Account Not Approved</h1><p>Your account request was not approved.</p>",
    )


def withdrawal_status(*, user_name: str, status: str, amount: Decimal) -> Mail:
    amt = format_currency(amount)
    if status == "Completed":
        text = f"<p>Your withdrawal request for <strong>{amt}</strong> has been processed.</p>"
    else:
        text = (
            f"<p>Your withdrawal request for <strong>{amt}</strong> has been rejected. "
            "Please contact support for more information.</p>"
        )
    return Mail(
        f"Your Withdrawal Request: {status}",
        f"<h1>Withdrawal Status Update</h1><p>Hello {escape(user_name)},</p>{text}{SIGNATURE}",
    )


def kyc_status(*, user_name: str, status: str) -> Mail:
    extra = ""
    if status == "Approved":
        extra = "<p>Congratulations! Your account is now fully verified.</p>"
    elif status == "Rejected":
        extra = "<p>Please review your details and re-submit if necessary.</p>"
    return Mail(
        f"Your KYC Status: {status}",
        (
            f"<h1>KYC Verification Update</h1><p>Hello {escape(user_name)},</p>"
            "<p>An admin has reviewed your details and your KYC status has been updated to "
            f"<strong>{escape(status)}</strong>.</p>{extra}{SIGNATURE}"
        ),
    )


def prize_awarded(*, user_name: str, goal_amount: Decimal, prize: str, earnings: Decimal) -> Mail:
    return Mail(
        "\U0001f389 Congratulations! You have won this month's prize!",
        (
            f"<h1>Congratulations {escape(user_name)}!</h1>"
            f"<p>You have successfully achieved the monthly target of {format_currency(goal_amount)}!</p>"
            f"<p>Your prize: <strong>{escape(prize)}</strong></p>"
            f"<p>Your earnings this month: <strong>{format_currency(earnings)}</strong></p>"
            "<p>Please contact our support team to arrange collection of your prize.</p>"
            "<p>Thank you for being an amazing affiliate!</p>"
        ),
    )

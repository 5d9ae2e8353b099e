"""
Solana Pay deep links.

Pure string formatting. Opening the link is the wallet application's job;
nothing here touches the network.
"""

from decimal import Decimal
from typing import Optional
from urllib.parse import quote

from stableflow.services.solana.client import ensure_address


def format_amount(amount: Decimal) -> str:
    """Plain decimal notation with no exponent and no trailing zeros."""
    return format(Decimal(amount).normalize(), "f")


def create_payment_request_url(
    recipient: str,
    amount: Decimal,
    mint: str,
    label: str,
    memo: Optional[str] = None,
) -> str:
    """
    Build ``solana:<recipient>?amount=..&spl-token=..&label=..[&message=..]``.

    Raises:
        InvalidAddress: If the recipient or mint is malformed
        ValueError: If the amount is not positive
    """
    recipient = ensure_address(recipient)
    mint = ensure_address(mint)
    amount = Decimal(str(amount))
    if not amount.is_finite() or amount <= 0:
        raise ValueError("Payment amount must be greater than 0")

    url = (
        f"solana:{recipient}"
        f"?amount={format_amount(amount)}"
        f"&spl-token={mint}"
        f"&label={quote(label, safe='')}"
    )
    if memo:
        url += f"&message={quote(memo, safe='')}"
    return url

"""
Keyword categorization of statement lines.
"""

from typing import Tuple

# Checked in order; the first category with a keyword present in the description wins
CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("transfer", ("transfer", "tfr", "wire")),
    ("fee", ("fee", "charge", "service")),
    ("interest", ("interest", "dividend")),
    ("payment", ("payment", "pay", "bill")),
    ("deposit", ("deposit", "credit")),
    ("withdrawal", ("withdrawal", "debit", "atm")),
)

DEFAULT_CATEGORY = "other"


def categorize(description: str) -> str:
    """Category for a transaction description; "other" when nothing matches."""
    text = (description or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_CATEGORY

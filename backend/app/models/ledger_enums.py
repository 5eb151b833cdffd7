"""
Ledger enumerations.
"""

import enum


class SplitPolicy(str, enum.Enum):
    """How an expense amount is divided among participants."""
    EQUAL = "equal"  # amount / participant count, residual on the last share
    EXACT = "exact"  # caller supplies each share
    PERCENTAGE = "percentage"  # caller supplies percentages summing to 100


class SettlementMethod(str, enum.Enum):
    """How a settlement payment was made."""
    CASH = "cash"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    OTHER = "other"


class ExpenseCategory(str, enum.Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    ACCOMMODATION = "accommodation"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    UTILITIES = "utilities"
    OTHER = "other"

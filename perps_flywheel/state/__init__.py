"""
Record store and token balances
"""

from .balances import BalanceTable
from .ledger import Ledger

__all__ = [
    "BalanceTable",
    "Ledger",
]

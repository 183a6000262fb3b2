"""
Fiscal calendar and account-nature rules (``erp_kernel.domain.fiscal``).

Responsibility
--------------
Pure functions for the April-to-March financial year and for deriving a
ledger's balance side from its account group's nature.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.
"""

from datetime import date, datetime
from enum import Enum, IntEnum

from erp_kernel.exceptions import DependencyError

FISCAL_YEAR_START_MONTH = 4


class AccountNature(IntEnum):
    """Nature ids carried by account groups."""

    EXPENSE = 1
    INCOME = 2
    ASSET = 3
    LIABILITY = 4


class BalanceType(str, Enum):
    DR = "Dr"
    CR = "Cr"


_DEBIT_NATURES = frozenset({AccountNature.EXPENSE, AccountNature.ASSET})
_CREDIT_NATURES = frozenset({AccountNature.INCOME, AccountNature.LIABILITY})


def get_financial_year(on: date | datetime) -> str:
    """
    Return the ``YYYY-YY`` financial year containing ``on``.

    January to March belong to the year that started the previous April:

    >>> get_financial_year(date(2025, 2, 10))
    '2024-25'
    >>> get_financial_year(date(2025, 4, 1))
    '2025-26'
    """
    if on.month < FISCAL_YEAR_START_MONTH:
        start = on.year - 1
    else:
        start = on.year
    return f"{start}-{(start + 1) % 100:02d}"


def balance_type_for_nature(nature_id: int) -> BalanceType:
    """
    Expense or Asset groups carry debit balances; Income or Liability
    groups carry credit balances.

    Raises:
        DependencyError: ``nature_id`` is not one of the four known natures.
    """
    if nature_id in _DEBIT_NATURES:
        return BalanceType.DR
    if nature_id in _CREDIT_NATURES:
        return BalanceType.CR
    raise DependencyError(
        "account_group_nature",
        nature_id,
        f"Invalid account group nature: {nature_id}",
    )

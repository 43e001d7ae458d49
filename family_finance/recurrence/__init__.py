"""
Recurrence package: month arithmetic, the occurrence projector and
installment series construction.

Import the projector and series builders from their modules
(``family_finance.recurrence.projector``, ``family_finance.recurrence.series``);
they depend on the models, which depend on ``months``.
"""

from family_finance.recurrence.months import (
    YearMonth,
    add_months,
    last_day_of_month,
    month_options,
)

__all__ = [
    "YearMonth",
    "add_months",
    "last_day_of_month",
    "month_options",
]

"""
Family Finance - Source Package

Household finance bookkeeping: accounts payable and receivable,
credit-card transactions and a family piggy bank.

DESIGN PRINCIPLES:
1. Fixed accounts are stored once and projected into every month
2. Generated occurrences are never written; confirming one creates a row
3. A card payment always has exactly one linked card transaction
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Finance Team"

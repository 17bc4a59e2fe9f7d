"""
Loan Engine

Amortization schedule generation and repayment allocation for microfinance
loan servicing. All financial calculations use Decimal precision.
"""

__version__ = "1.0.0"

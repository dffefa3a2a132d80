"""
Progressive Loan Engine

Repayment schedule generation, progressive re-amortization and deterministic
replay of backdated loan mutations. All financial math uses Decimal with an
explicit precision context.
"""

__version__ = "1.0.0"

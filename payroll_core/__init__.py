"""
Payroll Core

Loan administration for a role-based payroll system: installment allocation,
deduction schedules, payment tracking and loan lifecycle, with Decimal money
math and a hash-chained audit trail.
"""

__version__ = "1.0.0"

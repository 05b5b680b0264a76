"""School Ledger - billing and payroll reconciliation for a school portal."""

from school_ledger.allocation import allocate_payment
from school_ledger.ledger import compute_fee_statement
from school_ledger.overdue import classify_due_payment
from school_ledger.payroll import generate_payroll
from school_ledger.summary import compute_financial_summary

__version__ = "0.1.0"

__all__ = [
    "allocate_payment",
    "classify_due_payment",
    "compute_fee_statement",
    "compute_financial_summary",
    "generate_payroll",
]

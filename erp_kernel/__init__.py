"""
ERP Kernel - multi-level approval workflow core

A generic approval engine for accounting master data with:
- Linear multi-level routing per workflow
- Compare-and-swap state transitions
- Race-free scoped code generation
- Keyed pending-notification upsert
- Post-approval ledger and invoice side effects
"""

__version__ = "0.1.0"

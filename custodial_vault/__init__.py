"""
Custodial Vault Ledger

A single-asset custodial ledger: per-account balances, a fixed aggregate
capacity, a per-withdrawal ceiling, and reentrancy-safe withdrawals that
commit bookkeeping before value leaves the vault.
"""

__version__ = "1.0.0"

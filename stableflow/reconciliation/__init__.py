"""Wallet balance reconciliation."""

from stableflow.reconciliation.coordinator import BalanceReconciler, WalletNotSetError

__all__ = ["BalanceReconciler", "WalletNotSetError"]

"""
StableFlow - Reconciliation Core

Keeps three sources of truth about a user's financial position in step:
expense-reimbursement claims, the cached ledger balance held in the
remote store, and the USDC balance observed on Solana.

DESIGN PRINCIPLES:
1. Snapshots, not diffs - observers always see a complete view
2. Fail early, fail visibly
3. The blockchain is read, never written
4. Every state change is auditable
5. Services are constructed and injected, never looked up globally
"""

__version__ = "1.0.0"
__author__ = "StableFlow Team"

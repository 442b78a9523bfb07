"""
Fulfillment Kernel

The consistency core of an e-commerce back office:
- Order status state machine with append-only history
- Inventory ledger (every stock change is an attributable movement)
- Idempotent checkout (retried submissions never deduct stock twice)
- Staff stock adjustments and the inventory audit view
"""

__version__ = "0.1.0"

"""
Inventory: one on-hand quantity per named item plus its movement ledger.

Models:
- InventoryItem (current quantity, pricing and stocking thresholds)
- StockMovement (append-only signed deltas; written only by services.stock)
"""

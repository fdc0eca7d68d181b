"""
Kardex Kernel

Persistence and kernel services for inventory valuation:
- Stock units, lots and movements with stored running balances
- Weighted-average and FIFO costing
- Gap-free per-key sequence allocation
- Deterministic retroactive recalculation support
"""

__version__ = "0.1.0"

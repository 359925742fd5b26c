"""
Costing Kernel

Lot-based inventory valuation for the warehouse:
- Landed unit cost on receipt
- FIFO drawdown on outbound
- Value-weighted monthly warehouse fee distribution
- Read-only inventory rollups
"""

__version__ = "0.1.0"

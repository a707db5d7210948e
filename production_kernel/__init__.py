"""
Production Kernel

A multi-tenant production workflow engine with:
- Configurable per-tenant stage catalogs
- A closed job card state machine with per-job serialization
- Quality gating of stage completion and rework feedback loops
- Client return inspection
- An append-only, balance-preserving materials ledger
"""

__version__ = "0.1.0"

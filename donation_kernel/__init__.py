"""
Donation Kernel -- shared infrastructure for the settlement pipeline.

Provides:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with context propagation
- Injectable clock
- Decimal money helpers
- SQLAlchemy declarative base and session management
"""

__version__ = "0.1.0"

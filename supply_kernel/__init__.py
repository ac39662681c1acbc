"""
Supply Kernel

Infrastructure for the plant procurement system:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clock
- SQLAlchemy base, engine and session management
- Append-only enforcement and hash-chained audit trail
- Locked sequence counters for document references
"""

__version__ = "0.1.0"

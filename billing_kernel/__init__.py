"""
Billing Kernel

Shared infrastructure for the progress billing engine:
- Declarative persistence base and financial column types
- Transactional session scope
- Structured JSON logging
- Typed exception hierarchy
- Locked-counter sequence allocation
- Exchange rate storage and lookup
"""

__version__ = "0.1.0"

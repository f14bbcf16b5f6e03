"""Drug supply-chain ledger of organizations, batches, drugs and transfers over an in-memory world state."""

__version__ = "0.1.0"
__all__ = ["__version__"]
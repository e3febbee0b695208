"""Engine-local persistence."""
from .ledger import Ledger

__all__ = ["Ledger"]

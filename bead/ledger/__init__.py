from .emulator import EmulatedLedger
from .http import HttpLedgerProvider
from .provider import LedgerProvider

__all__ = ["EmulatedLedger", "HttpLedgerProvider", "LedgerProvider"]

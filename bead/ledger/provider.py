from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from bead.shared.result import Result

from .types import OracleRecord, TransactionDescription, Utxo


class LedgerProvider(ABC):
    """Capability interface the orchestrator drives.

    Implementations own networking, signing, timeouts and any retry policy.
    Query methods return ``Failure(NETWORK_ERROR)`` rather than raising when
    the backend is unreachable; ``submit_transaction`` returns the opaque
    transaction id on success.
    """

    @abstractmethod
    def now_ms(self) -> int:
        """Current ledger time as POSIX milliseconds."""

    @abstractmethod
    async def get_utxos(self, address: str) -> Result[List[Utxo]]:
        ...

    @abstractmethod
    async def get_oracle_record(
        self,
        game_id: int,
        pot_address: Optional[str] = None,
    ) -> Result[Optional[OracleRecord]]:
        """Return the published record for ``game_id`` or ``None`` if absent."""

    @abstractmethod
    async def submit_transaction(self, tx: TransactionDescription) -> Result[str]:
        ...


__all__ = ["LedgerProvider"]

"""In-memory ledger for tests and local runs.

Keeps a UTXO set keyed by reference, a controllable clock and the list of
accepted transactions. ``submit_transaction`` enforces the same ledger rules a
real node would reject on: unknown or spent inputs, a validity window that
does not contain the current time, lovelace that does not balance against the
fee, and token quantities that are not conserved under the mint map.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import bittensor as bt

from bead.protocol.idempotency import stable_payload_hash
from bead.shared.enums import GameOutcome
from bead.shared.result import ErrorCode, Result, failure, success

from .provider import LedgerProvider
from .types import (
    NATIVE_UNIT,
    OracleRecord,
    TransactionDescription,
    Utxo,
    UtxoRef,
    is_oracle_output,
    oracle_datum,
)

DEFAULT_START_MS = 1_767_225_600_000  # 2026-01-01T00:00:00Z


class EmulatedLedger(LedgerProvider):
    def __init__(self, start_ms: int = DEFAULT_START_MS, oracle_policy_id: Optional[str] = None):
        self._now_ms = int(start_ms)
        self.oracle_policy_id = oracle_policy_id
        self._utxos: Dict[UtxoRef, Utxo] = {}
        self._genesis_counter = 0
        self.transactions: List[TransactionDescription] = []

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------
    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError("cannot move the ledger clock backwards")
        self._now_ms += int(ms)
        return self._now_ms

    def set_time(self, ts_ms: int) -> None:
        if ts_ms < self._now_ms:
            raise ValueError("cannot move the ledger clock backwards")
        self._now_ms = int(ts_ms)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------
    def fund(
        self,
        address: str,
        lovelace: int,
        assets: Optional[Dict[str, int]] = None,
        datum: Optional[Dict[str, Any]] = None,
    ) -> Utxo:
        """Create an output out of thin air at ``address``."""
        self._genesis_counter += 1
        tx_hash = stable_payload_hash({"genesis": self._genesis_counter, "address": address})
        utxo = Utxo(
            ref=UtxoRef(tx_hash=tx_hash, index=0),
            address=address,
            assets={NATIVE_UNIT: int(lovelace), **(assets or {})},
            datum=datum,
        )
        self._utxos[utxo.ref] = utxo
        return utxo

    def publish_oracle(
        self,
        pot_address: str,
        game_id: int,
        winner: Optional[GameOutcome],
        game_policy_id: str,
        total_pool: int,
        total_winnings: int,
        oracle_unit: Optional[str] = None,
        lovelace: int = 2_000_000,
    ) -> Utxo:
        """Seed an oracle record output at the pot."""
        return self.fund(
            pot_address,
            lovelace,
            assets={oracle_unit: 1} if oracle_unit else None,
            datum=oracle_datum(
                game_id=game_id,
                winner=winner,
                game_policy_id=game_policy_id,
                total_pool=total_pool,
                total_winnings=total_winnings,
            ),
        )

    def utxos_at(self, address: str) -> List[Utxo]:
        return sorted(
            (u for u in self._utxos.values() if u.address == address),
            key=lambda u: (u.ref.tx_hash, u.ref.index),
        )

    def balance(self, address: str, unit: str = NATIVE_UNIT) -> int:
        return sum(u.quantity(unit) for u in self.utxos_at(address))

    # ------------------------------------------------------------------
    # LedgerProvider
    # ------------------------------------------------------------------
    async def get_utxos(self, address: str) -> Result[List[Utxo]]:
        return success(self.utxos_at(address))

    async def get_oracle_record(
        self,
        game_id: int,
        pot_address: Optional[str] = None,
    ) -> Result[Optional[OracleRecord]]:
        for utxo in self._utxos.values():
            if pot_address is not None and utxo.address != pot_address:
                continue
            if not is_oracle_output(utxo):
                continue
            record = OracleRecord.from_utxo(utxo, self.oracle_policy_id)
            if record is not None and record.game_id == game_id:
                return success(record)
        return success(None)

    async def submit_transaction(self, tx: TransactionDescription) -> Result[str]:
        rejected = self._check(tx)
        if rejected is not None:
            bt.logging.warning({"emulator_tx_rejected": {"operation": tx.operation, "reason": rejected}})
            return failure(ErrorCode.TRANSACTION_FAILED, f"Ledger rejected transaction: {rejected}", {"reason": rejected})

        tx_hash = stable_payload_hash(tx.fingerprint_payload())
        for utxo in tx.inputs:
            del self._utxos[utxo.ref]
        for index, output in enumerate(tx.outputs):
            created = Utxo(
                ref=UtxoRef(tx_hash=tx_hash, index=index),
                address=output.address,
                assets=dict(output.assets),
                datum=output.datum,
            )
            self._utxos[created.ref] = created
        self.transactions.append(tx)
        bt.logging.debug({"emulator_tx_accepted": {"operation": tx.operation, "tx_hash": tx_hash}})
        return success(tx_hash)

    def _check(self, tx: TransactionDescription) -> Optional[str]:
        refs = [u.ref for u in tx.inputs]
        if not refs:
            return "transaction has no inputs"
        if len(set(refs)) != len(refs):
            return "duplicate input"
        for utxo in tx.inputs:
            current = self._utxos.get(utxo.ref)
            if current is None:
                return f"input {utxo.ref} is unknown or already spent"
            if current != utxo:
                return f"input {utxo.ref} does not match the ledger"
        for utxo in tx.reference_inputs:
            if utxo.ref not in self._utxos:
                return f"reference input {utxo.ref} is unknown or already spent"
        if not any(u.address == tx.signer for u in tx.inputs):
            return "signer does not own any input"
        if not tx.validity.contains(self._now_ms):
            return f"current time {self._now_ms} outside validity window"

        lovelace_in = sum(u.lovelace for u in tx.inputs)
        lovelace_out = sum(o.lovelace for o in tx.outputs)
        if lovelace_in != lovelace_out + tx.fee:
            return f"value not conserved: in {lovelace_in}, out {lovelace_out}, fee {tx.fee}"

        units = set(tx.mint)
        for u in tx.inputs:
            units.update(u.token_units())
        for o in tx.outputs:
            units.update(unit for unit in o.assets if unit != NATIVE_UNIT)
        for unit in units:
            held = sum(u.quantity(unit) for u in tx.inputs)
            paid = sum(o.quantity(unit) for o in tx.outputs)
            if held + tx.mint.get(unit, 0) != paid:
                return f"token {unit} not conserved"
            if any(o.quantity(unit) < 0 for o in tx.outputs):
                return f"negative quantity of {unit}"
        return None


__all__ = ["EmulatedLedger", "DEFAULT_START_MS"]

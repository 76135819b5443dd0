from __future__ import annotations

import asyncio
import os
import time
from typing import Any, Callable, List, Optional

import bittensor as bt
import httpx
from pydantic import ValidationError

from bead.shared.result import ErrorCode, Result, failure, from_exception, success

from .provider import LedgerProvider
from .types import OracleRecord, TransactionDescription, Utxo

_NOT_FOUND = object()


class HttpLedgerProvider(LedgerProvider):
    """
    Async client for a JSON ledger gateway.

    - ``GET /addresses/{address}/utxos`` returns a list of UTXOs
    - ``GET /oracles/{game_id}`` returns the oracle record (404 when absent)
    - ``POST /transactions`` constructs, signs and submits; returns ``{"tx_hash": ...}``
    - Retries transient HTTP errors on queries with exponential backoff
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        initial_backoff: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("BEAD_GATEWAY_API_KEY")
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._clock = clock or time.time
        headers = {"X-Api-Key": self.api_key} if self.api_key else {}
        if client is None:
            limits = httpx.Limits(max_keepalive_connections=20, max_connections=40)
            client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds, limits=limits, headers=headers)
        self._client = client

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpLedgerProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # LedgerProvider
    # ------------------------------------------------------------------
    async def get_utxos(self, address: str) -> Result[List[Utxo]]:
        try:
            payload = await self._get_json(f"/addresses/{address}/utxos")
        except (httpx.HTTPError, ValueError) as exc:
            return from_exception(exc, ErrorCode.NETWORK_ERROR, {"address": address}, prefix="UTXO query failed")
        if payload is _NOT_FOUND:
            return success([])
        try:
            return success([Utxo.model_validate(item) for item in payload or []])
        except (ValidationError, TypeError) as exc:
            return from_exception(exc, ErrorCode.NETWORK_ERROR, {"address": address}, prefix="Malformed UTXO payload")

    async def get_oracle_record(
        self,
        game_id: int,
        pot_address: Optional[str] = None,
    ) -> Result[Optional[OracleRecord]]:
        params = {"pot_address": pot_address} if pot_address else None
        try:
            payload = await self._get_json(f"/oracles/{int(game_id)}", params=params)
        except (httpx.HTTPError, ValueError) as exc:
            return from_exception(exc, ErrorCode.NETWORK_ERROR, {"game_id": game_id}, prefix="Oracle query failed")
        if payload is _NOT_FOUND or not payload:
            return success(None)
        try:
            return success(OracleRecord.model_validate(payload))
        except ValidationError as exc:
            return from_exception(exc, ErrorCode.NETWORK_ERROR, {"game_id": game_id}, prefix="Malformed oracle payload")

    async def submit_transaction(self, tx: TransactionDescription) -> Result[str]:
        body = tx.model_dump(mode="json")
        attempt = 0
        backoff = self.initial_backoff
        while True:
            try:
                resp = await self._client.post("/transactions", json=body)
                resp.raise_for_status()
                data = resp.json()
                break
            except httpx.ConnectError as exc:
                # Connection never established; nothing was submitted.
                if attempt >= self.max_retries:
                    return from_exception(exc, ErrorCode.TRANSACTION_FAILED, {"operation": tx.operation})
                await asyncio.sleep(backoff)
            except httpx.HTTPStatusError as exc:
                detail = _error_detail(exc.response)
                bt.logging.warning(
                    {"ledger_submit_rejected": {"status": exc.response.status_code, "detail": detail}}
                )
                return failure(
                    ErrorCode.TRANSACTION_FAILED,
                    f"Gateway rejected transaction: {detail}",
                    {"status": exc.response.status_code, "operation": tx.operation},
                )
            except (httpx.HTTPError, ValueError) as exc:
                return from_exception(exc, ErrorCode.TRANSACTION_FAILED, {"operation": tx.operation})
            attempt += 1
            backoff *= 2

        tx_hash = data.get("tx_hash") if isinstance(data, dict) else None
        if not tx_hash:
            return failure(
                ErrorCode.TRANSACTION_FAILED,
                "Gateway response did not include a transaction hash",
                {"operation": tx.operation},
            )
        return success(str(tx_hash))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        attempt = 0
        backoff = self.initial_backoff
        while True:
            try:
                resp = await self._client.get(path, params=params)
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 404:
                    bt.logging.debug({"ledger_http_404": {"path": path}})
                    return _NOT_FOUND
                if status in (400, 401, 403):
                    raise
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(backoff)
            except (httpx.RequestError, httpx.TimeoutException):
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(backoff)
            attempt += 1
            backoff *= 2


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


__all__ = ["HttpLedgerProvider"]

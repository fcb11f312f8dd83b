"""JSON-RPC 2.0 client for the Pharos node.

One request per call, fixed id, no retry. Failures propagate to the caller
unchanged: transport errors as httpx exceptions, non-JSON bodies as
RpcResponseError, error envelopes as RpcError.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Context, Decimal

import httpx

from pharos_exporter.errors import RpcError, RpcResponseError
from pharos_exporter.keys import normalize_bls_key, trim_0x

log = logging.getLogger("pharos_exporter.rpc")

REQUEST_ID = 1
WEI_PER_ETH = 10 ** 18

# 2**256 wei has 78 decimal digits; keep every one of them through the division.
_BALANCE_CTX = Context(prec=78)


# ── Evidence ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BlockProofEvidence:
    height: int
    signed_keys: frozenset


@dataclass(frozen=True)
class ValidatorSetEvidence:
    height: int
    members: frozenset


# ── Helpers ──────────────────────────────────────────────────────────────────

def height_hex(height: int) -> str:
    return f"0x{height:x}"


def parse_height(s: str) -> tuple[int, bool]:
    """Parse a block height; returns (height, is_latest).

    Accepts 0x-prefixed hex, plain decimal, or the tag ``latest``.
    """
    s = s.strip().lower()
    if s == "latest":
        return 0, True
    try:
        v = int(s, 0)
    except ValueError:
        raise ValueError(f"invalid height {s!r}") from None
    if v < 0:
        raise ValueError(f"invalid height {s!r}")
    return v, False


def wei_hex_to_eth(hex_str: str) -> Decimal:
    """Convert a hex wei amount to ETH without going through a float."""
    try:
        wei = int(trim_0x(hex_str), 16)
    except ValueError:
        raise RpcResponseError(f"invalid balance hex: {hex_str!r}") from None
    return _BALANCE_CTX.divide(Decimal(wei), Decimal(WEI_PER_ETH))


# ── Client ───────────────────────────────────────────────────────────────────

class RpcClient:
    """Stateless request/response helper over an httpx.AsyncClient."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None):
        self.url = url
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, params: list):
        log.debug("rpc %s %s", method, params)
        body = {"jsonrpc": "2.0", "id": REQUEST_ID, "method": method, "params": params}
        resp = await self._client.post(self.url, json=body)
        raw = resp.content
        try:
            envelope = json.loads(raw)
        except ValueError as e:
            text = raw.decode("utf-8", errors="replace")
            raise RpcResponseError(
                f"unmarshal rpc response: {e} (status={resp.status_code}, body={text!r})"
            ) from e
        if not isinstance(envelope, dict):
            raise RpcResponseError(f"unexpected rpc envelope: {envelope!r}")

        err = envelope.get("error")
        if err is not None:
            if isinstance(err, dict):
                raise RpcError(err.get("code", 0), err.get("message", ""))
            raise RpcError(0, str(err))
        return envelope.get("result")

    async def block_number(self) -> str:
        result = await self.call("eth_blockNumber", [])
        if not isinstance(result, str):
            raise RpcResponseError(f"parse eth_blockNumber result failed: {result!r}")
        return result

    async def validator_set(self, height: int) -> ValidatorSetEvidence | None:
        result = await self.call("debug_getValidatorInfo", [height_hex(height)])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RpcResponseError(f"parse validator info failed: {result!r}")
        members = frozenset(
            normalize_bls_key(v["blsKey"])
            for v in result.get("validatorSet") or []
            if isinstance(v, dict) and v.get("blsKey")
        )
        return ValidatorSetEvidence(height=height, members=members)

    async def block_proof(self, height: int) -> BlockProofEvidence | None:
        result = await self.call("debug_getBlockProof", [height_hex(height)])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RpcResponseError(f"parse block proof failed: {result!r}")
        signed = frozenset(normalize_bls_key(k) for k in result.get("signedBlsKeys") or [] if k)
        return BlockProofEvidence(height=height, signed_keys=signed)

    async def balance_eth(self, address: str) -> Decimal:
        result = await self.call("eth_getBalance", [address, "latest"])
        if not isinstance(result, str):
            raise RpcResponseError(f"parse eth_getBalance result failed: {result!r}")
        return wei_hex_to_eth(result)

"""Height-ordered scan of block proofs and validator sets for one validator."""

import asyncio
import logging
import time
from dataclasses import dataclass, replace

from pharos_exporter.errors import ChainPollError, ConfigError
from pharos_exporter.keys import ValidatorIdentity
from pharos_exporter.metrics import MetricsState
from pharos_exporter.rpc import RpcClient, height_hex, parse_height

log = logging.getLogger("pharos_exporter.chain_poller")

DEFAULT_POLL_INTERVAL = 5.0


@dataclass
class ChainPollerConfig:
    rpc_url: str
    bls_key: str = ""
    address: str = ""
    check_block_proof: bool = True
    check_validator_set: bool = True
    poll_interval: float = DEFAULT_POLL_INTERVAL


@dataclass
class ChainCursor:
    last_checked_height: int = 0

    def advance(self, height: int):
        if height > self.last_checked_height:
            self.last_checked_height = height


class ChainPoller:
    """Scans every height between the cursor and the chain tip, in order.

    A height is fully checked before the next one is fetched, and the cursor
    only moves once the whole range up to the tip has been processed. Any RPC
    or parse failure ends the poller with ChainPollError.
    """

    def __init__(self, config: ChainPollerConfig, metrics: MetricsState,
                 rpc: RpcClient | None = None, clock=time.time):
        if not config.rpc_url:
            raise ConfigError("rpc url is required")
        if config.check_block_proof and not (config.bls_key or "").strip():
            raise ConfigError("my bls key is required when check block proof is enabled")
        if config.poll_interval <= 0:
            config = replace(config, poll_interval=DEFAULT_POLL_INTERVAL)

        self.config = config
        self.metrics = metrics
        self.identity = ValidatorIdentity.from_config(config.bls_key, config.address)
        self.rpc = rpc if rpc is not None else RpcClient(config.rpc_url)
        self.cursor = ChainCursor()
        self._clock = clock

    async def _latest_height(self) -> int:
        try:
            latest_hex = await self.rpc.block_number()
        except Exception as e:
            raise ChainPollError(f"fetch latest block number failed: {e}") from e
        try:
            height, _ = parse_height(latest_hex)
        except ValueError as e:
            raise ChainPollError(f"parse latest block number failed: {e}") from e
        return height

    async def start(self):
        """Position the cursor one below the current tip."""
        tip = await self._latest_height()
        self.cursor = ChainCursor(last_checked_height=tip - 1 if tip > 0 else 0)
        log.info("RPC: %s start from height: %d", self.config.rpc_url,
                 self.cursor.last_checked_height + 1)

    async def check_height(self, height: int):
        key = self.identity.bls_key

        if self.config.check_block_proof:
            try:
                proof = await self.rpc.block_proof(height)
            except Exception as e:
                raise ChainPollError(
                    f"fetch block proof failed (height={height_hex(height)}): {e}"
                ) from e
            if proof is not None and key in proof.signed_keys:
                self.metrics.record_vote_inclusion(self._clock())
                log.debug("vote included at height %d", height)

        if self.config.check_validator_set:
            try:
                vset = await self.rpc.validator_set(height)
            except Exception as e:
                raise ChainPollError(
                    f"fetch validators failed (height={height_hex(height)}): {e}"
                ) from e
            if vset is not None and key in vset.members:
                self.metrics.record_active(self._clock())
                log.debug("active in validator set at height %d", height)

    async def refresh_balance(self):
        address = self.identity.address
        if not address:
            return
        try:
            eth = await self.rpc.balance_eth(address)
        except Exception as e:
            raise ChainPollError(f"fetch balance failed: {e}") from e
        self.metrics.set_balance(address, float(eth))

    async def poll_once(self) -> bool:
        """Run one tick: catch-up scan then balance refresh.

        Returns True if new heights were scanned.
        """
        latest = await self._latest_height()
        last = self.cursor.last_checked_height
        scanned = latest > last
        if scanned:
            for h in range(last + 1, latest + 1):
                await self.check_height(h)
            self.cursor.advance(latest)
            log.debug("scanned heights %d..%d", last + 1, latest)
        await self.refresh_balance()
        return scanned

    async def run(self):
        await self.start()
        try:
            while True:
                if not await self.poll_once():
                    await asyncio.sleep(self.config.poll_interval)
        finally:
            await self.rpc.aclose()

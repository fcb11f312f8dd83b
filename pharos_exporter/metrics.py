"""Prometheus metrics written by the chain poller and the log follower."""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

UNKNOWN_PROPOSER = "unknown"


class MetricsState:
    """Holds all validator metrics.

    Created once per process and handed to both engines. Every field is an
    independent prometheus_client primitive with its own lock, so updates
    from the two engines need no extra synchronisation. Paired updates
    (counter + timestamp) are not atomic as a whole.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        if registry is None:
            registry = REGISTRY
        self.registry = registry

        # -- Consensus log --
        self.propose_total = Counter(
            "validator_propose",
            "Total number of propose attempts observed in logs.",
            registry=registry,
        )
        self.last_propose_timestamp = Gauge(
            "validator_last_propose_timestamp",
            "Unix timestamp of the last propose event observed in logs.",
            registry=registry,
        )
        self.endorse_total = Counter(
            "validator_endorse",
            "Total number of endorse events observed in logs, by proposer.",
            ["proposer"],
            registry=registry,
        )
        self.last_endorse_timestamp = Gauge(
            "validator_last_endorse_timestamp",
            "Unix timestamp of the last endorse event observed in logs.",
            registry=registry,
        )

        # -- Chain --
        self.vote_inclusion_total = Counter(
            "validator_vote_inclusion",
            "Total number of blocks where the validator vote was included.",
            registry=registry,
        )
        self.vote_inclusion_timestamp = Gauge(
            "validator_vote_inclusion_timestamp",
            "Unix timestamp when the validator vote was last included.",
            registry=registry,
        )
        self.active_total = Counter(
            "validator_active",
            "Total number of blocks where the validator was active in the validator set.",
            registry=registry,
        )
        self.active_timestamp = Gauge(
            "validator_active_timestamp",
            "Unix timestamp when validator active status was last observed.",
            registry=registry,
        )
        self.address_balance_eth = Gauge(
            "validator_address_balance_eth",
            "Balance of the tracked address in ETH.",
            ["address"],
            registry=registry,
        )

    def record_propose(self, ts: float):
        self.propose_total.inc()
        self.last_propose_timestamp.set(ts)

    def record_endorse(self, ts: float, proposer: str | None = None):
        self.endorse_total.labels(proposer=proposer or UNKNOWN_PROPOSER).inc()
        self.last_endorse_timestamp.set(ts)

    def record_vote_inclusion(self, ts: float):
        self.vote_inclusion_total.inc()
        self.vote_inclusion_timestamp.set(ts)

    def record_active(self, ts: float):
        self.active_total.inc()
        self.active_timestamp.set(ts)

    def set_balance(self, address: str, eth: float):
        self.address_balance_eth.labels(address=address.lower()).set(eth)

"""Consensus aggregation — off-ledger claim collection and settlement."""

from taskledger.aggregator.collector import (
    ClaimCollector,
    ClaimDisposition,
    ClaimRejected,
    CollectionState,
)
from taskledger.aggregator.config import AggregatorConfig
from taskledger.aggregator.quorum import QuorumOutcome, QuorumRule
from taskledger.aggregator.service import Aggregator, NoQuorumPolicy

__all__ = [
    "Aggregator",
    "AggregatorConfig",
    "ClaimCollector",
    "ClaimDisposition",
    "ClaimRejected",
    "CollectionState",
    "NoQuorumPolicy",
    "QuorumOutcome",
    "QuorumRule",
]

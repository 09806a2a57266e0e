"""Aggregator configuration, loaded from the environment or a .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class AggregatorConfig:
    """Settings for the aggregation service.

    private_key is the settlement authority's signing key; the task
    registry must be configured with the matching address.
    """
    private_key: str
    quorum_threshold: str = "1/2"
    min_claims: int = 1
    collection_window_seconds: int = 60
    max_collection_rounds: int = 3
    no_quorum_policy: str = "leave_pending"
    submit_retries: int = 3
    retry_backoff_seconds: float = 0.5
    settled_retention_seconds: int = 3600

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> AggregatorConfig:
        """Build a config from environment variables.

        Loads env_file (or a .env found from the working directory) first;
        variables already set in the environment take precedence.
        """
        load_dotenv(env_file)
        private_key = os.getenv("AGGREGATOR_PRIVATE_KEY")
        if not private_key:
            raise ValueError("AGGREGATOR_PRIVATE_KEY is not set")
        return cls(
            private_key=private_key,
            quorum_threshold=os.getenv("QUORUM_THRESHOLD", "1/2"),
            min_claims=int(os.getenv("MIN_CLAIMS", "1")),
            collection_window_seconds=int(os.getenv("COLLECTION_WINDOW_SECONDS", "60")),
            max_collection_rounds=int(os.getenv("MAX_COLLECTION_ROUNDS", "3")),
            no_quorum_policy=os.getenv("NO_QUORUM_POLICY", "leave_pending"),
            submit_retries=int(os.getenv("SUBMIT_RETRIES", "3")),
            retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "0.5")),
            settled_retention_seconds=int(os.getenv("SETTLED_RETENTION_SECONDS", "3600")),
        )

    def engine_config(self) -> dict[str, Any]:
        """The config dict consumed by Aggregator."""
        return {
            "quorum_threshold": self.quorum_threshold,
            "min_claims": self.min_claims,
            "collection_window_seconds": self.collection_window_seconds,
            "max_collection_rounds": self.max_collection_rounds,
            "no_quorum_policy": self.no_quorum_policy,
            "submit_retries": self.submit_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "settled_retention_seconds": self.settled_retention_seconds,
        }

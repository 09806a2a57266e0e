"""Operator configuration, loaded from the environment or a .env file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class OperatorConfig:
    """Settings for one operator node."""
    private_key: str
    queue_capacity: int = 100
    registration_expiry_seconds: int = 3600

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> OperatorConfig:
        load_dotenv(env_file)
        private_key = os.getenv("OPERATOR_PRIVATE_KEY")
        if not private_key:
            raise ValueError("OPERATOR_PRIVATE_KEY is not set")
        return cls(
            private_key=private_key,
            queue_capacity=int(os.getenv("OPERATOR_QUEUE_CAPACITY", "100")),
            registration_expiry_seconds=int(os.getenv("REGISTRATION_EXPIRY_SECONDS", "3600")),
        )

    def engine_config(self) -> dict[str, Any]:
        return {
            "queue_capacity": self.queue_capacity,
            "registration_expiry_seconds": self.registration_expiry_seconds,
        }

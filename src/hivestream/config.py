"""
Client configuration.

Loaded from keyword arguments, a JSON file, or HIVE_* environment variables
(a .env file is picked up through python-dotenv).
"""

import os
from pathlib import Path
from typing import Optional

import dotenv
import orjson
from pydantic import BaseModel, Field, field_validator

DEFAULT_RPC_NODES = ["https://api.hive.blog", "https://anyx.io"]

ENV_PREFIX = "HIVE_"


class ClientConfig(BaseModel):
    rpc_nodes: list[str] = Field(default_factory=lambda: list(DEFAULT_RPC_NODES))
    rpc_error_limit: int = Field(default=10, ge=1, description="Errors in 10 minutes before quarantine")
    rpc_timeout: float = Field(default=1.0, gt=0, description="Per-call timeout in seconds")
    broadcast_timeout: float = Field(default=10.0, gt=0, description="Timeout for a synchronous broadcast")

    use_irreversible_head: bool = False
    blocks_behind_head: int = Field(default=0, ge=0)

    state_file: Optional[Path] = None
    state_key: str = "default"

    submission_interval: float = Field(default=1.0, gt=0)
    submission_max_retries: int = Field(default=3, ge=0)
    chain_properties_ttl: float = Field(default=60.0, gt=0)

    log_level: str = "info"

    @field_validator("rpc_nodes")
    @classmethod
    def _check_nodes(cls, value: list[str]) -> list[str]:
        nodes = [v.strip() for v in value if v and v.strip()]
        if not nodes:
            raise ValueError("at least one RPC node is required")
        return nodes

    @classmethod
    def from_file(cls, path: Path) -> "ClientConfig":
        """Load from a JSON file of option names."""
        with open(path, "rb") as f:
            data = orjson.loads(f.read())
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ClientConfig":
        """Load from HIVE_* environment variables, unset ones keep defaults."""
        dotenv.load_dotenv(env_file)

        options: dict = {}
        nodes = os.getenv(f"{ENV_PREFIX}RPC_NODES")
        if nodes:
            options["rpc_nodes"] = nodes.split(",")

        for name in (
            "rpc_error_limit",
            "rpc_timeout",
            "broadcast_timeout",
            "use_irreversible_head",
            "blocks_behind_head",
            "state_file",
            "state_key",
            "submission_interval",
            "submission_max_retries",
            "chain_properties_ttl",
            "log_level",
        ):
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value is not None and value != "":
                options[name] = value

        return cls.model_validate(options)

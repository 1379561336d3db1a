"""
Engine configuration parameters for LUBA.

Defines period minimums, the bid value unit and the engine identity that
namespaces every escrow address.
"""

import json
import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv

from luba.crypto import keccak256, hex_to_bytes

ENV_PREFIX = "LUBA_"

DEFAULT_ENGINE_ID = keccak256(b"luba.auction-engine")[-20:]


@dataclass
class AuctionConfig:
    """Engine-wide configuration parameters"""

    # Period minimums (seconds)
    min_bid_period: int = 3600
    min_reveal_period: int = 3600

    # One bid unit in ledger base units (bids are uint48, balances are not)
    value_unit: int = 10**9

    # Engine identity, mixed into every escrow derivation
    engine_id: bytes = DEFAULT_ENGINE_ID

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    db_name: str = "luba.db"

    def __post_init__(self):
        if self.min_bid_period < 1 or self.min_reveal_period < 1:
            raise ValueError("Minimum periods must be at least one second")
        if self.value_unit < 1:
            raise ValueError(f"value_unit must be positive, got {self.value_unit}")
        if len(self.engine_id) != 20:
            raise ValueError(f"engine_id must be 20 bytes, got {len(self.engine_id)}")
        self.data_dir = Path(self.data_dir)
        self.log_dir = Path(self.log_dir)

    def ensure_dirs(self) -> None:
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _coerce(name: str, raw: Any) -> Any:
    """Convert a file or environment value to the field's type."""
    if name == "engine_id":
        return raw if isinstance(raw, bytes) else hex_to_bytes(str(raw))
    if name in ("data_dir", "log_dir"):
        return Path(raw)
    if name == "db_name":
        return str(raw)
    return int(raw)


def _read_file(config_path: Path) -> Dict[str, Any]:
    if config_path.suffix == ".toml":
        with open(config_path, "rb") as fh:
            data = tomllib.load(fh)
        # Allow either a flat file or an [auction] table
        return data.get("auction", data)
    if config_path.suffix == ".json":
        return json.loads(config_path.read_text())
    raise ValueError(f"Unsupported config format: {config_path.suffix}")


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    **overrides,
) -> AuctionConfig:
    """
    Load configuration from file, environment and explicit overrides.

    Precedence (lowest to highest): defaults, config file, LUBA_* environment
    variables (a .env file is loaded first), keyword overrides.

    Args:
        config_path: Optional path to a JSON or TOML config file
        env_file: Optional .env file; defaults to ./.env when present
        **overrides: Field values that win over every other source

    Returns:
        AuctionConfig instance
    """
    known = {f.name for f in fields(AuctionConfig)}
    values: Dict[str, Any] = {}

    if config_path:
        for key, raw in _read_file(Path(config_path)).items():
            if key not in known:
                raise ValueError(f"Unknown config key: {key}")
            values[key] = _coerce(key, raw)

    load_dotenv(env_file or find_dotenv(usecwd=True))
    for name in known:
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is not None:
            values[name] = _coerce(name, raw)

    values.update(overrides)
    return replace(AuctionConfig(), **values)


# Global config instance (can be overridden)
config = AuctionConfig()

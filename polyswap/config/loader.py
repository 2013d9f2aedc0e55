"""YAML config loader with environment overrides, snapshots and runtime get/set.

Deployment-specific values (RPC endpoint, contract addresses) are usually
supplied through the environment; an override wins over the YAML file.
"""

import hashlib
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from polyswap.config.schema import PolyswapConfig

logger = logging.getLogger(__name__)

ENV_OVERRIDES: dict[str, str] = {
    "RPC_URL": "chain.rpc_url",
    "CHAIN_ID": "chain.chain_id",
    "COMPOSABLE_COW": "contracts.composable_cow",
    "POLYSWAP_HANDLER": "contracts.polyswap_handler",
    "FALLBACK_HANDLER": "contracts.fallback_handler",
    "SPENDER": "contracts.spender",
    "MULTISEND_CALL_ONLY": "contracts.multisend_call_only",
    "VALUE_FACTORY": "contracts.value_factory",
    "APP_DATA": "contracts.app_data",
    "CLOB_URL": "polymarket.clob_url",
    "POLYMARKET_FUNDER": "polymarket.funder",
}


def load_config(path: str | Path, environ: Mapping[str, str] | None = None) -> PolyswapConfig:
    """Load and validate config from a YAML file, then apply env overrides.

    Missing sections fall back to the Polygon defaults. A missing file is
    treated as empty so a bare checkout runs on defaults plus environment.
    """
    path = Path(path)
    raw: dict = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("Config %s not found, using defaults", path)
    return PolyswapConfig(**apply_env_overrides(raw, environ))


def apply_env_overrides(raw: dict, environ: Mapping[str, str] | None = None) -> dict:
    """Copy of `raw` with every set ENV_OVERRIDES variable written to its key."""
    env = os.environ if environ is None else environ
    data = json.loads(json.dumps(raw))
    for var, dotted_key in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        section, field = dotted_key.split(".")
        data.setdefault(section, {})[field] = value
        logger.debug("Config %s taken from $%s", dotted_key, var)
    return data


def config_hash(config: PolyswapConfig) -> str:
    """Short SHA256 of the canonical JSON dump."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def snapshot_config(config: PolyswapConfig, db: Any) -> str:
    """Store the config in config_snapshots unless an identical one exists. Returns the hash."""
    h = config_hash(config)
    row = db.execute(
        "SELECT 1 FROM config_snapshots WHERE config_hash = ?", (h,)
    ).fetchone()
    if row is None:
        db.execute(
            "INSERT INTO config_snapshots (config_hash, config_json, created_at) "
            "VALUES (?, ?, CURRENT_TIMESTAMP)",
            (h, config.model_dump_json()),
        )
        db.commit()
        logger.info("Config snapshot %s stored", h)
    return h


def get_config_value(config: PolyswapConfig, dotted_key: str) -> Any:
    """Read a value by dotted path, e.g. 'workflow.max_setup_rounds'."""
    obj: Any = config
    for part in dotted_key.split("."):
        if not hasattr(obj, part):
            raise KeyError(f"Config key not found: {dotted_key}")
        obj = getattr(obj, part)
    return obj


def _coerce(old_value: Any, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if isinstance(old_value, bool):
        return value.lower() in ("1", "true", "yes", "on")
    if isinstance(old_value, int):
        return int(value)
    if isinstance(old_value, float):
        return float(value)
    return value


def set_config_value(
    config: PolyswapConfig, dotted_key: str, value: Any
) -> PolyswapConfig:
    """Return a re-validated copy with one value replaced.

    String values are coerced to the type of the current value.
    """
    data = json.loads(config.model_dump_json())
    *sections, field = dotted_key.split(".")
    target = data
    for part in sections:
        if not isinstance(target.get(part), dict):
            raise KeyError(f"Config key not found: {dotted_key}")
        target = target[part]
    if field not in target:
        raise KeyError(f"Config key not found: {dotted_key}")
    target[field] = _coerce(target[field], value)
    return PolyswapConfig(**data)

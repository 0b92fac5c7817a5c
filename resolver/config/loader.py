"""YAML config loader with environment overrides and runtime get/set."""

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from resolver.config.schema import ResolverConfig

# env var -> dotted config key
ENV_OVERRIDES: dict[str, str] = {
    "RPC_URL": "chain.rpc_url",
    "CONTRACT_ADDRESS": "chain.contract_address",
    "COORDINATOR_URL": "coordinator.base_url",
    "AUCTION_CHANNEL_URL": "auction.channel_url",
    "RAZORPAYX_ACCOUNT_NUMBER": "payments.account_number",
    "RESOLVER_CALLBACK_PORT": "callback.port",
    "RESOLVER_CALLBACK_URL": "callback.public_url",
}

# BACKEND_URL is the backend root: REST lives under /api, Socket.IO at the root.
# COORDINATOR_URL and AUCTION_CHANNEL_URL override either half.
BACKEND_ROOT_VAR = "BACKEND_URL"
BACKEND_API_PATH = "/api"

REQUIRED_SECRETS = (
    "RESOLVER_PRIVATE_KEY",
    "RAZORPAYX_KEY_ID",
    "RAZORPAYX_KEY_SECRET",
)


def load_config(path: str | Path | None, env: dict[str, str] | None = None) -> ResolverConfig:
    """Load and validate config from a YAML file.

    A missing path yields the defaults. Endpoint settings listed in
    ENV_OVERRIDES are taken from the environment when set.
    """
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    config = ResolverConfig(**raw)
    env = os.environ if env is None else env
    backend = env.get(BACKEND_ROOT_VAR)
    if backend:
        root = backend.rstrip("/")
        config = set_config_value(config, "coordinator.base_url", root + BACKEND_API_PATH)
        config = set_config_value(config, "auction.channel_url", root)
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            config = set_config_value(config, key, value)
    return config


def missing_secrets(env: dict[str, str] | None = None) -> list[str]:
    """Return the names of required secret env vars that are not set."""
    env = os.environ if env is None else env
    return [name for name in REQUIRED_SECRETS if not env.get(name)]


def config_hash(config: ResolverConfig) -> str:
    """Compute a deterministic SHA256 hash of the config."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def get_config_value(config: ResolverConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'observer.max_block_span'."""
    parts = dotted_key.split(".")
    obj: Any = config
    for part in parts:
        if hasattr(obj, part):
            obj = getattr(obj, part)
        elif isinstance(obj, dict):
            obj = obj[part]
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj


def set_config_value(config: ResolverConfig, dotted_key: str, value: Any) -> ResolverConfig:
    """Set a config value by dotted key path and re-validate.

    Returns a new ResolverConfig instance.
    """
    data = json.loads(config.model_dump_json())
    parts = dotted_key.split(".")
    target = data
    for part in parts[:-1]:
        if part not in target:
            raise KeyError(f"Config key not found: {dotted_key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Config key not found: {dotted_key}")
    old_value = target.get(parts[-1])
    if isinstance(old_value, bool) and isinstance(value, str):
        value = value.lower() in ("1", "true", "yes", "on")
    elif isinstance(old_value, int) and isinstance(value, str):
        value = int(value)
    elif isinstance(old_value, float) and isinstance(value, str):
        value = float(value)
    target[parts[-1]] = value
    return ResolverConfig(**data)


def save_config(config: ResolverConfig, path: str | Path) -> None:
    """Write config to YAML in the layout load_config reads."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)

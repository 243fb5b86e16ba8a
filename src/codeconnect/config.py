"""Configuration management for codeconnect."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from codeconnect.errors import ConfigError
from codeconnect.pairing.codes import DEFAULT_ALPHABET, DEFAULT_CODE_LENGTH

STORE_BACKENDS = ("memory", "redis_rest")
CLOSED_CODE_POLICIES = ("release", "retain")


@dataclass
class PairingConfig:
    """Code issuance and pairing configuration."""

    code_length: int = DEFAULT_CODE_LENGTH
    alphabet: str = DEFAULT_ALPHABET
    ttl_seconds: int = 600
    max_ttl_seconds: int = 86400  # cap on caller-requested TTLs
    max_issue_attempts: int = 5
    max_members: int = 2  # 2 = one generator + one claimant
    closed_code_policy: str = "release"
    sweep_interval: float = 30.0  # seconds
    retention_grace: int = 60  # store keeps expired records this long for the sweep


@dataclass
class StoreConfig:
    """Code store backend configuration."""

    backend: str = "memory"
    url: str | None = None
    token: str | None = None
    key_prefix: str = "pair:"
    timeout: float = 5.0


@dataclass
class RelayConfig:
    """Per-connection delivery configuration."""

    outbox_size: int = 256
    send_timeout: float = 5.0


@dataclass
class RateLimitConfig:
    """Rate limits for the HTTP issuance endpoint."""

    issue_per_minute: int = 30


@dataclass
class Config:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_file: str | None = None
    access_log: bool = False
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    pairing: PairingConfig = field(default_factory=PairingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "codeconnect" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def validate_config(config: Config) -> Config:
    """Check values that would break pairing at runtime.

    Raises:
        ConfigError: On the first invalid value.
    """
    pairing = config.pairing
    if pairing.code_length < 1:
        raise ConfigError(f"pairing.code_length must be >= 1, got {pairing.code_length}")
    if len(set(pairing.alphabet)) < 2:
        raise ConfigError("pairing.alphabet needs at least 2 distinct symbols")
    if pairing.ttl_seconds <= 0:
        raise ConfigError(f"pairing.ttl_seconds must be > 0, got {pairing.ttl_seconds}")
    if pairing.max_ttl_seconds < pairing.ttl_seconds:
        raise ConfigError(
            f"pairing.max_ttl_seconds must be >= pairing.ttl_seconds ({pairing.ttl_seconds})"
        )
    if pairing.max_issue_attempts < 1:
        raise ConfigError("pairing.max_issue_attempts must be >= 1")
    if pairing.max_members < 2:
        raise ConfigError(f"pairing.max_members must be >= 2, got {pairing.max_members}")
    if pairing.closed_code_policy not in CLOSED_CODE_POLICIES:
        raise ConfigError(
            f"pairing.closed_code_policy must be one of {CLOSED_CODE_POLICIES}"
        )
    if config.store.backend not in STORE_BACKENDS:
        raise ConfigError(f"store.backend must be one of {STORE_BACKENDS}")
    if config.store.backend == "redis_rest" and not (config.store.url and config.store.token):
        raise ConfigError("store.url and store.token are required for redis_rest")
    if config.relay.outbox_size < 1:
        raise ConfigError("relay.outbox_size must be >= 1")
    return config


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file.

    Store credentials missing from the file fall back to the
    UPSTASH_REDIS_REST_URL / UPSTASH_REDIS_REST_TOKEN environment variables.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.
        environ: Injectable environment for testing.

    Returns:
        Config object with values from file or defaults.

    Raises:
        ConfigError: If a value is out of range.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader
    env = os.environ if environ is None else environ

    data = reader(config_path) or {}

    pairing_data = data.get("pairing", {})
    pairing_config = PairingConfig(
        code_length=pairing_data.get("code_length", PairingConfig.code_length),
        alphabet=pairing_data.get("alphabet", PairingConfig.alphabet),
        ttl_seconds=pairing_data.get("ttl_seconds", PairingConfig.ttl_seconds),
        max_ttl_seconds=pairing_data.get(
            "max_ttl_seconds", PairingConfig.max_ttl_seconds
        ),
        max_issue_attempts=pairing_data.get(
            "max_issue_attempts", PairingConfig.max_issue_attempts
        ),
        max_members=pairing_data.get("max_members", PairingConfig.max_members),
        closed_code_policy=pairing_data.get(
            "closed_code_policy", PairingConfig.closed_code_policy
        ),
        sweep_interval=pairing_data.get("sweep_interval", PairingConfig.sweep_interval),
        retention_grace=pairing_data.get(
            "retention_grace", PairingConfig.retention_grace
        ),
    )

    store_data = data.get("store", {})
    store_config = StoreConfig(
        backend=store_data.get("backend", StoreConfig.backend),
        url=store_data.get("url") or env.get("UPSTASH_REDIS_REST_URL"),
        token=store_data.get("token") or env.get("UPSTASH_REDIS_REST_TOKEN"),
        key_prefix=store_data.get("key_prefix", StoreConfig.key_prefix),
        timeout=store_data.get("timeout", StoreConfig.timeout),
    )

    relay_data = data.get("relay", {})
    relay_config = RelayConfig(
        outbox_size=relay_data.get("outbox_size", RelayConfig.outbox_size),
        send_timeout=relay_data.get("send_timeout", RelayConfig.send_timeout),
    )

    rate_limit_data = data.get("rate_limit", {})
    rate_limit_config = RateLimitConfig(
        issue_per_minute=rate_limit_data.get(
            "issue_per_minute", RateLimitConfig.issue_per_minute
        ),
    )

    config = Config(
        host=data.get("host", Config.host),
        port=data.get("port", Config.port),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        access_log=data.get("access_log", Config.access_log),
        cors_origins=data.get("cors_origins", ["*"]),
        pairing=pairing_config,
        store=store_config,
        relay=relay_config,
        rate_limit=rate_limit_config,
    )
    return validate_config(config)

#!/usr/bin/env python3
"""
Config Loader Module

Loads the JSON configuration file and turns its "broker" section into an
immutable BrokerConfig.

- ${VAR} references anywhere in the file are expanded from the environment
- TRADIER_API_KEY / TRADIER_ACCOUNT_ID override the file's credentials, so
  secrets can stay out of config.json
- Every BrokerConfig field is optional with a documented default; nothing
  is read from package-level mutable state

Config layout (see config/config.example.json):

    {
        "broker": {...},
        "circuit_breaker": {...},
        "logging": {...}
    }
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from strangler.errors import ValidationError

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.tradier.com/v1"
LIVE_BASE_URL = "https://api.tradier.com/v1"

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_PROFIT_TARGET = 0.5
DEFAULT_USER_AGENT = "strangler/1.0 (+tradier)"

# Requests per minute by endpoint category
SANDBOX_RATE_LIMIT = 120
LIVE_RATE_LIMIT = 500

ENV_API_KEY = "TRADIER_API_KEY"
ENV_ACCOUNT_ID = "TRADIER_ACCOUNT_ID"


@dataclass(frozen=True)
class RateLimits:
    """
    Broker rate limits in requests per minute.

    These are hints: the client logs remaining headroom but does not
    throttle on its own.
    """
    market_data: int = 0
    trading: int = 0
    standard: int = 0

    @property
    def is_set(self) -> bool:
        return self.market_data > 0 or self.trading > 0 or self.standard > 0

    @classmethod
    def defaults(cls, sandbox: bool) -> "RateLimits":
        limit = SANDBOX_RATE_LIMIT if sandbox else LIVE_RATE_LIMIT
        return cls(market_data=limit, trading=limit, standard=limit)


@dataclass(frozen=True)
class BrokerConfig:
    """
    Broker client configuration. Immutable once built.

    Attributes:
        api_key: Tradier bearer token
        account_id: Tradier account number
        sandbox: Use the sandbox endpoint (default True)
        base_url: Override endpoint; empty means sandbox/live default
        timeout: Per-request timeout in seconds (default 10)
        use_otoco: Try OTOCO-style entry before a plain strangle
        otoco_multileg_supported: Whether the account accepts the emulated
            multi-leg OTOCO submission; when False the OTOCO attempt reports
            FeatureUnsupportedError without a network call
        profit_target: Fraction of credit to capture on exit, 0.0-1.0
        rate_limits: Requests-per-minute hints; defaults by environment
        user_agent: User-Agent header value
        accept_lowercase_option_type: Accept "p"/"c" when decoding symbols
    """
    api_key: str = ""
    account_id: str = ""
    sandbox: bool = True
    base_url: str = ""
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    use_otoco: bool = False
    otoco_multileg_supported: bool = False
    profit_target: float = DEFAULT_PROFIT_TARGET
    rate_limits: RateLimits = field(default_factory=RateLimits)
    user_agent: str = DEFAULT_USER_AGENT
    accept_lowercase_option_type: bool = True

    def __post_init__(self):
        # Out-of-range profit targets are rejected, never clamped
        if not 0.0 <= self.profit_target <= 1.0:
            raise ValidationError(
                f"invalid profit_target {self.profit_target}: must be between 0.0 and 1.0"
            )
        if self.timeout <= 0:
            raise ValidationError(f"invalid timeout {self.timeout}: must be > 0 seconds")

    @property
    def resolved_base_url(self) -> str:
        """Base URL without trailing slash."""
        url = self.base_url or (SANDBOX_BASE_URL if self.sandbox else LIVE_BASE_URL)
        return url.rstrip("/")

    @property
    def resolved_rate_limits(self) -> RateLimits:
        """Configured limits, or environment defaults when none are set."""
        if self.rate_limits.is_set:
            return self.rate_limits
        return RateLimits.defaults(self.sandbox)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "BrokerConfig":
        """
        Build from a full config dict (uses its "broker" section).

        Environment variables TRADIER_API_KEY / TRADIER_ACCOUNT_ID take
        precedence over the file.

        Raises:
            ValidationError: Invalid profit target or timeout.
        """
        broker = config.get("broker", {}) or {}
        limits = broker.get("rate_limits", {}) or {}

        return cls(
            api_key=os.environ.get(ENV_API_KEY) or broker.get("api_key", ""),
            account_id=os.environ.get(ENV_ACCOUNT_ID) or broker.get("account_id", ""),
            sandbox=bool(broker.get("sandbox", True)),
            base_url=broker.get("base_url", "") or "",
            timeout=float(broker.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            use_otoco=bool(broker.get("use_otoco", False)),
            otoco_multileg_supported=bool(broker.get("otoco_multileg_supported", False)),
            profit_target=float(broker.get("profit_target", DEFAULT_PROFIT_TARGET)),
            rate_limits=RateLimits(
                market_data=int(limits.get("market_data", 0)),
                trading=int(limits.get("trading", 0)),
                standard=int(limits.get("standard", 0)),
            ),
            user_agent=broker.get("user_agent", DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
            accept_lowercase_option_type=bool(broker.get("accept_lowercase_option_type", True)),
        )


class ConfigLoader:
    """
    Loads and validates the JSON config file.

    Usage:
        loader = ConfigLoader("config/config.json")
        config = loader.load_config()
        broker_config = loader.broker_config()
    """

    def __init__(self, config_path: str = "config/config.json"):
        """
        Initialize config loader.

        Args:
            config_path: Path to the JSON config file
        """
        self.config_path = config_path
        self._config: Optional[Dict[str, Any]] = None

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from the JSON file (cached after first load).

        Returns:
            dict: Full configuration dictionary

        Raises:
            FileNotFoundError: If the config file doesn't exist
            json.JSONDecodeError: If the file is not valid JSON
            ValueError: If required settings are missing
        """
        if self._config is not None:
            return self._config

        if not os.path.exists(self.config_path):
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                f"Copy config/config.example.json to {self.config_path} and fill in your credentials."
            )

        with open(self.config_path, "r") as f:
            raw = f.read()

        config = json.loads(os.path.expandvars(raw))
        self._validate(config)

        logger.info(f"Configuration loaded from: {self.config_path}")
        self._config = config
        return config

    def broker_config(self) -> BrokerConfig:
        """BrokerConfig built from the loaded file."""
        return BrokerConfig.from_config(self.load_config())

    def _validate(self, config: Dict[str, Any]):
        """Check the required broker credentials are present."""
        if "broker" not in config:
            raise ValueError("Missing config section: broker")

        broker = config["broker"]
        for key, env_var in (("api_key", ENV_API_KEY), ("account_id", ENV_ACCOUNT_ID)):
            value = os.environ.get(env_var) or broker.get(key, "")
            if not str(value).strip():
                raise ValueError(f"Missing config key: broker.{key} (or set {env_var})")
            if str(value).startswith("YOUR_"):
                logger.warning(f"Config placeholder detected: broker.{key} - Please update with real values")

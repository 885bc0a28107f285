"""
Configuration manager for Craft Arbitrage.

Handles loading and managing application configuration from YAML files.
"""

import copy
import logging
import os
from fractions import Fraction
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from utils.constants import (
    API_BASE,
    CUSTOM_RECIPES_URL,
    DEFAULT_LISTING_FEE_RATE,
    IDS_PER_REQUEST,
    LISTINGS_TTL_SEC,
    SORT_KEYS,
    TIMEGATED_OUTPUTS,
    VENDOR_CUSTOM_PRICES,
    VENDOR_MARKUP,
    VENDOR_STANDARD_ITEMS,
)
from utils.paths import CONFIG_PATH, DB_PATH, LOG_DIR


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or parsed."""
    pass


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self.logger = logging.getLogger(__name__)

        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = CONFIG_PATH

        self._config = None

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            self.logger.warning("Config file not found at %s, using defaults", self.config_path)
            self._config = self.get_default_config()
            return self._config

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigError(f"Top level of {self.config_path} must be a mapping")

        # Merge with defaults to ensure all required keys exist
        self._config = self._merge_configs(self.get_default_config(), config)
        self.logger.info("Configuration loaded from %s", self.config_path)
        return self._config

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)."""
        value = self.get_config()
        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports dot notation)."""
        keys = key.split('.')
        current = self.get_config()
        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value

    def save_config(self, config: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None):
        """Save configuration to YAML file."""
        if config is not None:
            self._config = config

        if not self._config:
            self.logger.warning("No configuration to save")
            return

        save_path = Path(config_path) if config_path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            tmp_path = save_path.with_suffix(save_path.suffix + ".tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, save_path)

            self.logger.info("Configuration saved to %s", save_path)

        except OSError as e:
            self.logger.error("Failed to save configuration: %s", e)
            raise

    def get_default_config(self) -> Dict[str, Any]:
        """Return default configuration values."""
        return {
            'fees': {
                # 5% listing fee + 10% exchange fee
                'listing_fee_rate': DEFAULT_LISTING_FEE_RATE,
            },
            'crafting': {
                'include_timegated': False,
                'timegated_outputs': list(TIMEGATED_OUTPUTS),
                'custom_recipes': True,
                'custom_recipes_url': CUSTOM_RECIPES_URL,
                # Local JSON copy used instead of the URL when set
                'custom_recipes_file': None,
            },
            'ranking': {
                'sort_key': 'profit_total',
                'max_results': 50,
                'max_workers': 4,
                'min_step_profit': 0,
                'max_quantity': None,
                'fixed_sell_price': None,
                'disciplines': [],
            },
            'blacklist': {
                'items': [],
                'recipes': [],
            },
            'vendor': {
                'markup': VENDOR_MARKUP,
                'standard_items': list(VENDOR_STANDARD_ITEMS),
                'custom_prices': dict(VENDOR_CUSTOM_PRICES),
            },
            'api': {
                'base_url': API_BASE,
                'lang': 'en',
                'ids_per_request': IDS_PER_REQUEST,
                'timeout_seconds': 30,
                'rate_per_sec': 5.0,
                'rate_capacity': 10,
                'cache_ttl_sec': LISTINGS_TTL_SEC,
                # Fetch full order books only for items that look profitable at top of book
                'prefilter_listings': True,
            },
            'database': {
                'path': str(DB_PATH),
                'max_age_hours': 1,
            },
            'logging': {
                'level': "INFO",
                'file': str(LOG_DIR / "app.log"),
            },
        }

    def _merge_configs(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Merge user configuration with defaults."""
        result = copy.deepcopy(default)

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_listing_fee_rate(self) -> Fraction:
        """Get the seller-side trading post fee as an exact fraction.

        Raises ``ConfigError`` unless the rate is a number in [0, 1).
        """
        raw = self.get('fees.listing_fee_rate', DEFAULT_LISTING_FEE_RATE)
        try:
            # str() first so 0.15 becomes 3/20 rather than its binary approximation
            rate = Fraction(str(raw))
        except (TypeError, ValueError, ZeroDivisionError) as e:
            raise ConfigError(f"fees.listing_fee_rate must be a number, got {raw!r}") from e
        if not (0 <= rate < 1):
            raise ConfigError(f"fees.listing_fee_rate must be in [0, 1), got {raw!r}")
        return rate

    def get_ranking_options(self) -> Dict[str, Any]:
        """Get ranking sweep options."""
        return self.get('ranking', {})

    def get_api_config(self) -> Dict[str, Any]:
        """Get market API configuration."""
        return self.get('api', {})

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []
        config = self.get_config()

        for section in ('fees', 'ranking', 'api', 'database'):
            if section not in config:
                errors.append(f"Missing required section: {section}")

        try:
            self.get_listing_fee_rate()
        except ConfigError as e:
            errors.append(str(e))

        if self.get('ranking.sort_key') not in SORT_KEYS:
            errors.append(f"ranking.sort_key must be one of {', '.join(SORT_KEYS)}")

        workers = self.get('ranking.max_workers', 1)
        if not isinstance(workers, int) or workers < 1:
            errors.append("ranking.max_workers must be a positive integer")

        max_quantity = self.get('ranking.max_quantity')
        if max_quantity is not None and (not isinstance(max_quantity, int) or max_quantity < 0):
            errors.append("ranking.max_quantity must be a non-negative integer or null")

        if not self.get('api.base_url'):
            errors.append("api.base_url not configured")

        return errors

#!/usr/bin/env python3
"""
Configuration Management Module for the Programmable Tokens CLI

Handles hierarchical configuration loading, environment variable mapping,
validation, and management of settings across different environments.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

import yaml
from pydantic import ValidationError

from txbuilder.params import FeeSettings, ProtocolParams

# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.progtokens.yml',
    Path.cwd() / '.progtokens.json',
    Path.home() / '.progtokens' / 'config.yml',
    Path.home() / '.progtokens' / 'config.json',
]

# Environment variable prefix
ENV_PREFIX = 'PTOK_'

NETWORKS = ['mainnet', 'preprod', 'preview', 'testnet']

# Default configuration values
DEFAULT_CONFIG = {
    'network': 'preview',

    # Bootstrap parameters; empty means "read them from the snapshot"
    'protocol': {},

    'fees': {
        'min_fee_a': 44,
        'min_fee_b': 155381,
        'script_surcharge': 200000,
        'min_lovelace': 1000000,
    },

    'operations': {
        'max_retries': 3,
    },

    'state': {
        'snapshot': 'state.json',
    },

    'substandards': {
        'blueprints': {},    # substandard id -> plutus.json path
        'deployments': {},   # policy id -> {substandard_id, context}
    },

    'cli': {
        'output_format': 'table',
    },
}

# Configuration profiles
PROFILES = {
    'production': {
        'network': 'mainnet',
        'operations': {'max_retries': 5},
    },
    'testnet': {
        'network': 'preprod',
    },
    'development': {
        'network': 'preview',
        'operations': {'max_retries': 1},
    },
}


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (production, testnet, development)
        """
        self.logger = logging.getLogger('progtokens-cli.config')
        self.config_file = config_file
        self.profile = profile
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [DEFAULT_CONFIG]
        self._config_sources.append("defaults")

        if self.profile and self.profile in PROFILES:
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            config_data = self._load_config_file(Path(self.config_file))
            if config_data:
                configs.append(config_data)
                self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    config_data = self._load_config_file(config_path)
                    if config_data:
                        configs.append(config_data)
                        self._config_sources.append(f"file:{config_path}")
                        self.logger.debug(f"Loaded config from {config_path}")
                        break  # first found wins

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load configuration from file."""
        if not path.exists():
            self.logger.warning(f"Config file not found: {path}")
            return None
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    return yaml.safe_load(f)
                elif path.suffix == '.json':
                    return json.load(f)
                self.logger.warning(f"Unknown config file format: {path}")
                return None
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load config from {path}: {e}")
            return None

    def _load_environment_variables(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        ``PTOK_FEES_MIN_LOVELACE`` maps to ``{'fees': {'min_lovelace': ...}}``:
        underscores nest, except where they are part of a known key.
        """
        env_config = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            parts = key[len(ENV_PREFIX):].lower().split('_')
            path = self._resolve_env_path(parts)

            current = env_config
            for part in path[:-1]:
                current = current.setdefault(part, {})
            current[path[-1]] = self._parse_env_value(value)

        return env_config

    def _resolve_env_path(self, parts: List[str]) -> List[str]:
        path = []
        known = DEFAULT_CONFIG
        while parts:
            for size in range(len(parts), 0, -1):
                candidate = '_'.join(parts[:size])
                if isinstance(known, dict) and candidate in known:
                    break
            else:
                size = 1
                candidate = parts[0]
            path.append(candidate)
            known = known.get(candidate) if isinstance(known, dict) else None
            parts = parts[size:]
        return path

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Parse environment variable value to appropriate type."""
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

        if value.lower() in ['true', 'yes']:
            return True
        elif value.lower() in ['false', 'no']:
            return False

        return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                elif isinstance(value, dict):
                    result[key] = self._deep_merge(value)
                else:
                    result[key] = value

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str):
                if '~' in value or '$' in value:
                    config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'fees.min_lovelace')
            default: Default value if key not found
        """
        current = self.load()
        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path."""
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value
        self._config_cache = config

    def save(self, path: Optional[str] = None, format: str = 'yaml'):
        """
        Save current configuration to file.

        Args:
            path: File path to save to (default: project config file)
            format: Output format ('yaml' or 'json')
        """
        config = self.load()

        if not path:
            path = Path.cwd() / ('.progtokens.yml' if format == 'yaml' else '.progtokens.json')

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            if format == 'yaml':
                yaml.dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)

        self.logger.info(f"Configuration saved to {path}")

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        if config.get('network') not in NETWORKS:
            errors.append(f"Invalid network: {config.get('network')}")

        try:
            FeeSettings(**config.get('fees', {}))
        except ValidationError as e:
            errors.append(f"Invalid fees: {e.errors()[0].get('msg')}")

        if config.get('protocol'):
            try:
                ProtocolParams(**config['protocol'])
            except ValidationError as e:
                first = e.errors()[0]
                errors.append(f"Invalid protocol.{'.'.join(str(p) for p in first.get('loc', ()))}: "
                              f"{first.get('msg')}")

        max_retries = config.get('operations', {}).get('max_retries')
        if not isinstance(max_retries, int) or max_retries < 0:
            errors.append("operations.max_retries must be a non-negative integer")

        output_format = config.get('cli', {}).get('output_format')
        if output_format not in ['table', 'json', 'yaml']:
            errors.append(f"Invalid output format: {output_format}")

        for substandard_id, path in config.get('substandards', {}).get('blueprints', {}).items():
            if not Path(path).exists():
                errors.append(f"Blueprint for {substandard_id} not found: {path}")

        return errors

    def fee_settings(self) -> FeeSettings:
        return FeeSettings(**self.get('fees', {}))

    def protocol_params(self) -> Optional[ProtocolParams]:
        """Bootstrap parameters from configuration, or None to use the snapshot's."""
        section = self.get('protocol')
        if not section:
            return None
        return ProtocolParams(**{'network': self.get('network'), **section, 'fees': self.fee_settings()})

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []

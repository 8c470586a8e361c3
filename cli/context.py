"""
Shared CLI context: configuration, logging, output formatting and the
operations service wired from configuration.
"""

import sys
import json
import logging
import functools
from typing import Optional, Dict, Any

import click
import yaml
from tabulate import tabulate

from registry.state import InMemoryStateProvider, load_snapshot, save_snapshot
from substandards import SubstandardHandlerFactory, context_from_dict
from txbuilder.exceptions import ProtocolError
from txbuilder.operations import TokenOperationsService, TransactionContext
from txbuilder.protocol import ProtocolBuilder
from txbuilder.scripts import load_blueprint

from .config import ConfigurationManager


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.config_manager: Optional[ConfigurationManager] = None
        self.logger: logging.Logger = logging.getLogger('progtokens-cli')
        self._state: Optional[InMemoryStateProvider] = None
        self._service: Optional[TokenOperationsService] = None

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(level)
        root.addHandler(handler)

    def load_config(self):
        self.config_manager = ConfigurationManager(self.config_file, self.profile)
        self.config_manager.load()
        self.logger.debug(f"Configuration sources: {self.config_manager.get_sources()}")

    def get_config(self, key: str, default: Any = None) -> Any:
        if self.config_manager is None:
            self.load_config()
        return self.config_manager.get(key, default)

    # Wiring

    @property
    def snapshot_path(self) -> str:
        return self.get_config('state.snapshot')

    def state(self) -> InMemoryStateProvider:
        if self._state is None:
            self._state = load_snapshot(self.snapshot_path)
            params = self.config_manager.protocol_params()
            if params is not None:
                self._state.set_bootstrap_params(params)
        return self._state

    def service(self) -> TokenOperationsService:
        """Operations service over the configured snapshot, blueprints and deployments."""
        if self._service is not None:
            return self._service

        protocol = ProtocolBuilder(self.state(), self.config_manager.fee_settings())
        blueprints = {
            substandard_id: load_blueprint(path)
            for substandard_id, path in self.get_config('substandards.blueprints', {}).items()
        }
        factory = SubstandardHandlerFactory(protocol, blueprints)
        for policy_hex, entry in self.get_config('substandards.deployments', {}).items():
            substandard_id = entry['substandard_id']
            factory.record_deployment(bytes.fromhex(policy_hex), substandard_id,
                                      context_from_dict(substandard_id, entry.get('context')))

        self._service = TokenOperationsService(
            protocol, factory, max_retries=self.get_config('operations.max_retries', 3)
        )
        return self._service

    def emit_result(self, result: TransactionContext, apply: bool = False):
        """Print a TransactionContext; failures exit with status 1."""
        if not result.successful:
            self.output(result.to_dict())
            sys.exit(1)
        if apply:
            state = self.state()
            state.apply_transaction(result.plan.transaction)
            save_snapshot(state, self.snapshot_path)
            self.logger.info(f"Snapshot {self.snapshot_path} advanced by {result.plan.transaction.tx_id.hex()}")
        self.output(result.to_dict())

    # Output

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in specified format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            rows = [[key, self._format_value(value)] for key, value in data.items()]
            click.echo(tabulate(rows, tablefmt='plain', disable_numparse=True))
        elif isinstance(data, list) and data and isinstance(data[0], dict):
            headers = list(data[0].keys())
            rows = [[self._format_value(item.get(h, '')) for h in headers] for item in data]
            click.echo(tabulate(rows, headers=headers, tablefmt='grid', disable_numparse=True))
        elif isinstance(data, list):
            for item in data:
                click.echo(item)
        else:
            click.echo(data)

    def _format_value(self, value: Any) -> str:
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator to report protocol errors as typed errors with exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except ProtocolError as e:
            click.echo(f"Error [{e.code}]: {e.reason}", err=True)
            sys.exit(1)

    return wrapper

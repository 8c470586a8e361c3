#!/usr/bin/env python3
"""
Programmable Tokens - Command Line Interface

Builds unsigned transactions for programmable token operations against a
ledger state snapshot: registration, minting, burning, transfers, denylist
management and seizure.
"""

from typing import Optional

import click

from cli import __version__
from cli.context import CLIContext, pass_context


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              help='Path to configuration file')
@click.option('--profile', '-p',
              type=click.Choice(['production', 'testnet', 'development']),
              help='Configuration profile')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json', 'yaml']),
              default='table',
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, '--version', prog_name='progtokens',
                      message='%(prog)s v%(version)s')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], profile: Optional[str],
        output_format: str, verbose: int):
    """
    Programmable Tokens CLI

    Build unsigned transactions for programmable tokens: tokens whose every
    transfer, mint and burn is checked by the token's own on-ledger logic.

    Examples:
        progtokens registry list
        progtokens token register --substandard dummy --owner key:ab12... --asset-name 746f6b --quantity 1000 --fee-payer addr_test1...
        progtokens token transfer --sender addr_test1... --unit <policy><name> --quantity 10 --recipient addr_test1...
        progtokens blacklist add --policy-id <policy> --target key:cd34... --admin key:ef56... --fee-payer addr_test1...
    """
    ctx.config_file = config_file
    ctx.profile = profile
    ctx.output_format = output_format
    ctx.verbose = verbose

    ctx.setup_logging()
    ctx.load_config()

    ctx.logger.debug("CLI initialized with context")


def register_commands():
    """Register all command modules with the main CLI."""
    from cli.commands.blacklist import blacklist
    from cli.commands.config import config
    from cli.commands.protocol import protocol
    from cli.commands.registry import registry
    from cli.commands.token import token

    for group in (protocol, registry, token, blacklist, config):
        cli.add_command(group)


register_commands()


def main():
    cli()


if __name__ == '__main__':
    main()

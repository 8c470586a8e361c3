#!/usr/bin/env python3
"""
Configuration Management Commands for the Programmable Tokens CLI
"""

import sys
from typing import Optional

import click

from cli.context import CLIContext, pass_context


@click.group()
@pass_context
def config(ctx: CLIContext):
    """Show and validate the merged configuration."""
    ctx.logger.debug("Config command group invoked")


@config.command('show')
@click.option('--key', help='Specific configuration key to show (dot notation)')
@click.option('--sources', is_flag=True, help='Show configuration sources')
@pass_context
def show_config(ctx: CLIContext, key: Optional[str], sources: bool):
    """Show the configuration after merging all sources."""
    if sources:
        ctx.output({'sources': ctx.config_manager.get_sources()})
        return
    if key:
        value = ctx.config_manager.get(key)
        if value is None:
            click.echo(f"Configuration key not found: {key}", err=True)
            sys.exit(1)
        ctx.output({key: value})
        return
    ctx.output(ctx.config_manager.load())


@config.command('validate')
@pass_context
def validate_config(ctx: CLIContext):
    """Validate the configuration; exits with status 1 on problems."""
    errors = ctx.config_manager.validate()
    if errors:
        for error in errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid")

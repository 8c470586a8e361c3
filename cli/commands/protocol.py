#!/usr/bin/env python3
"""
Protocol Commands for the Programmable Tokens CLI
"""

import click

from cli.context import CLIContext, pass_context, handle_cli_error


@click.group()
@pass_context
def protocol(ctx: CLIContext):
    """Inspect the protocol deployment the CLI builds against."""
    ctx.logger.debug("Protocol command group invoked")


@protocol.command('show')
@pass_context
@handle_cli_error
def show_protocol(ctx: CLIContext):
    """Show bootstrap parameters and the substandards available."""
    service = ctx.service()
    params = service.protocol.params
    data = params.model_dump(exclude={'issuance_template'})
    data['issuance_template_bytes'] = len(params.issuance_template) // 2
    data['substandards'] = service.factory.registered_substandards()
    data['deployments'] = {
        policy.hex(): substandard_id
        for policy, (substandard_id, _) in sorted(service.factory.deployments().items())
    }
    ctx.output(data)

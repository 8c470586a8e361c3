#!/usr/bin/env python3
"""
Registry Query Commands for the Programmable Tokens CLI

Commands for listing registry nodes and building membership proofs.
"""

import click

from cli.context import CLIContext, pass_context, handle_cli_error
from txbuilder.exceptions import MalformedRequestError


@click.group()
@pass_context
def registry(ctx: CLIContext):
    """
    Registry query commands.

    The registry is the sorted list of every registered programmable token
    policy and the logic bound to it.
    """
    ctx.logger.debug("Registry command group invoked")


@registry.command('list')
@click.option('--limit', type=int, default=None, help='Show at most this many nodes')
@pass_context
@handle_cli_error
def list_registry(ctx: CLIContext, limit):
    """List registry nodes in key order."""
    lst = ctx.service().protocol.registry()
    rows = []
    for record in lst.records()[:limit]:
        row = record.node.describe()
        row['ref'] = str(record.utxo.ref) if record.utxo else None
        rows.append(row)
    if not rows:
        click.echo("Registry is empty", err=True)
        return
    ctx.output(rows)


@registry.command('proof')
@click.argument('key')
@pass_context
@handle_cli_error
def registry_proof(ctx: CLIContext, key: str):
    """
    Build the membership or non-membership proof for a policy id KEY (hex).
    """
    try:
        key_bytes = bytes.fromhex(key)
    except ValueError:
        raise MalformedRequestError(f"Key must be hex: {key}")

    lst = ctx.service().protocol.registry()
    pending = lst.build_exists_proof(key_bytes) if key_bytes in lst else lst.build_absence_proof(key_bytes)
    ctx.output({
        'key': key_bytes.hex(),
        'kind': pending.kind.value,
        'node': pending.record.node.describe(),
        'node_ref': str(pending.record.utxo.ref) if pending.record.utxo else None,
    })

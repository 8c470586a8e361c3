#!/usr/bin/env python3
"""
Denylist Commands for the Programmable Tokens CLI

Bootstrap a freeze-and-seize denylist and freeze or unfreeze owners.
"""

import click

from cli.context import CLIContext, pass_context, handle_cli_error


@click.group()
@pass_context
def blacklist(ctx: CLIContext):
    """Manage freeze-and-seize denylists."""
    ctx.logger.debug("Blacklist command group invoked")


@blacklist.command('init')
@click.option('--admin', required=True, help="Denylist manager credential 'key:<hex>'")
@click.option('--issuer-admin', help='Issuer admin key hash of the deployment (hex)')
@click.option('--fee-payer', required=True)
@click.option('--apply', 'apply_tx', is_flag=True, help='Apply the built transaction to the snapshot')
@pass_context
@handle_cli_error
def init_blacklist(ctx: CLIContext, admin, issuer_admin, fee_payer, apply_tx):
    """
    Bootstrap a denylist.

    The resulting deployment context is printed under metadata.context;
    add it to substandards.deployments to use the denylist.
    """
    context = None
    if issuer_admin:
        manager = admin.split(':', 1)[-1]
        context = {'issuer_admin_pkh': issuer_admin, 'denylist_manager_pkh': manager}
    result = ctx.service().blacklist_init({'admin_credential': admin, 'fee_payer': fee_payer}, context)
    ctx.emit_result(result, apply_tx)


def _blacklist_request(policy_id, target, admin, fee_payer):
    return {
        'policy_id': policy_id,
        'target_credential': target,
        'admin_credential': admin,
        'fee_payer': fee_payer,
    }


@blacklist.command('add')
@click.option('--policy-id', required=True, help='Token policy id')
@click.option('--target', required=True, help="Owner credential to freeze")
@click.option('--admin', required=True, help="Denylist manager credential")
@click.option('--fee-payer', required=True)
@click.option('--apply', 'apply_tx', is_flag=True, help='Apply the built transaction to the snapshot')
@pass_context
@handle_cli_error
def add_to_blacklist(ctx: CLIContext, policy_id, target, admin, fee_payer, apply_tx):
    """Freeze an owner."""
    result = ctx.service().blacklist_insert(_blacklist_request(policy_id, target, admin, fee_payer))
    ctx.emit_result(result, apply_tx)


@blacklist.command('remove')
@click.option('--policy-id', required=True, help='Token policy id')
@click.option('--target', required=True, help="Owner credential to unfreeze")
@click.option('--admin', required=True, help="Denylist manager credential")
@click.option('--fee-payer', required=True)
@click.option('--apply', 'apply_tx', is_flag=True, help='Apply the built transaction to the snapshot')
@pass_context
@handle_cli_error
def remove_from_blacklist(ctx: CLIContext, policy_id, target, admin, fee_payer, apply_tx):
    """Unfreeze an owner."""
    result = ctx.service().blacklist_remove(_blacklist_request(policy_id, target, admin, fee_payer))
    ctx.emit_result(result, apply_tx)

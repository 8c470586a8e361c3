#!/usr/bin/env python3
"""
Token Operation Commands for the Programmable Tokens CLI

Each command builds one unsigned transaction through the operations service
and prints the CBOR plus operation metadata. With --apply the snapshot is
advanced as if the transaction had been confirmed.
"""

import json
from typing import Optional

import click

from cli.context import CLIContext, pass_context, handle_cli_error
from txbuilder.exceptions import MalformedRequestError


apply_option = click.option('--apply', 'apply_tx', is_flag=True,
                            help='Apply the built transaction to the snapshot')


def _load_context(path: Optional[str]):
    if path is None:
        return None
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise MalformedRequestError(f"Cannot read substandard config {path}: {e}")


@click.group()
@pass_context
def token(ctx: CLIContext):
    """Register, mint, burn, transfer and seize programmable tokens."""
    ctx.logger.debug("Token command group invoked")


@token.command('register')
@click.option('--substandard', required=True, help='Substandard id (dummy, freeze-and-seize)')
@click.option('--owner', required=True, help="Issuer credential, 'key:<hex>' or 'script:<hex>'")
@click.option('--asset-name', required=True, help='Asset name (hex)')
@click.option('--quantity', required=True, type=int, help='Initial supply')
@click.option('--recipient', help='Recipient wallet address (defaults to the fee payer)')
@click.option('--fee-payer', required=True, help='Address paying fees')
@click.option('--substandard-config', type=click.Path(exists=True),
              help='JSON file with the substandard deployment context')
@apply_option
@pass_context
@handle_cli_error
def register_token(ctx: CLIContext, substandard, owner, asset_name, quantity, recipient,
                   fee_payer, substandard_config, apply_tx):
    """Register a token and mint its initial supply."""
    result = ctx.service().register({
        'substandard_id': substandard,
        'owner_credential': owner,
        'asset_name': asset_name,
        'quantity': quantity,
        'recipient': recipient,
        'fee_payer': fee_payer,
        'substandard_config': _load_context(substandard_config),
    })
    ctx.emit_result(result, apply_tx)


@token.command('mint')
@click.option('--policy-id', required=True)
@click.option('--asset-name', required=True, help='Asset name (hex)')
@click.option('--quantity', required=True, type=int)
@click.option('--recipient', required=True)
@click.option('--fee-payer', required=True)
@apply_option
@pass_context
@handle_cli_error
def mint_token(ctx: CLIContext, policy_id, asset_name, quantity, recipient, fee_payer, apply_tx):
    """Mint more of a registered token."""
    result = ctx.service().mint({
        'policy_id': policy_id,
        'asset_name': asset_name,
        'quantity': quantity,
        'recipient': recipient,
        'fee_payer': fee_payer,
    })
    ctx.emit_result(result, apply_tx)


@token.command('burn')
@click.option('--policy-id', required=True)
@click.option('--asset-name', required=True, help='Asset name (hex)')
@click.option('--quantity', required=True, type=int)
@click.option('--target', required=True, help="Custody record '<txhash>#<index>'")
@click.option('--fee-payer', required=True)
@apply_option
@pass_context
@handle_cli_error
def burn_token(ctx: CLIContext, policy_id, asset_name, quantity, target, fee_payer, apply_tx):
    """Burn tokens out of a custody record under the token's admin logic."""
    result = ctx.service().burn({
        'policy_id': policy_id,
        'asset_name': asset_name,
        'quantity': quantity,
        'target_record_ref': target,
        'fee_payer': fee_payer,
    })
    ctx.emit_result(result, apply_tx)


@token.command('transfer')
@click.option('--sender', required=True, help='Sender wallet address (pays fees)')
@click.option('--unit', required=True, help='Policy id followed by asset name (hex)')
@click.option('--quantity', required=True, type=int)
@click.option('--recipient', required=True)
@apply_option
@pass_context
@handle_cli_error
def transfer_token(ctx: CLIContext, sender, unit, quantity, recipient, apply_tx):
    """Transfer tokens from the sender's custody records to the recipient."""
    result = ctx.service().transfer({
        'sender': sender,
        'unit': unit,
        'quantity': quantity,
        'recipient': recipient,
    })
    ctx.emit_result(result, apply_tx)


@token.command('seize')
@click.option('--policy-id', required=True)
@click.option('--target', required=True, help="Custody record '<txhash>#<index>'")
@click.option('--recipient', required=True)
@click.option('--fee-payer', required=True)
@apply_option
@pass_context
@handle_cli_error
def seize_token(ctx: CLIContext, policy_id, target, recipient, fee_payer, apply_tx):
    """Seize every token of a policy from one custody record."""
    result = ctx.service().seize({
        'policy_id': policy_id,
        'target_record_ref': target,
        'recipient': recipient,
        'fee_payer': fee_payer,
    })
    ctx.emit_result(result, apply_tx)

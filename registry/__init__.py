"""
Programmable Tokens - Sorted List Registry

Schema, engine and state access for the on-ledger sorted lists: the token
registry and substandard denylists.
"""

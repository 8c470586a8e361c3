"""
Programmable Tokens CLI Commands Package

Command groups of the progtokens CLI.
"""

__all__ = ['protocol', 'registry', 'token', 'blacklist', 'config']

"""
Programmable Tokens Substandards Module

Pluggable token logic: the handler interface, its capabilities, the
bundled substandards and the factory resolving them.
"""

from .base import BlacklistManageable, Seizeable, SubstandardHandler
from .context import FreezeAndSeizeContext, SubstandardContext, context_from_dict
from .dummy import DummySubstandardHandler
from .factory import SubstandardHandlerFactory
from .freeze_and_seize import FreezeAndSeizeHandler

__all__ = [
    "SubstandardHandler",
    "BlacklistManageable",
    "Seizeable",
    "SubstandardContext",
    "FreezeAndSeizeContext",
    "context_from_dict",
    "DummySubstandardHandler",
    "FreezeAndSeizeHandler",
    "SubstandardHandlerFactory",
]

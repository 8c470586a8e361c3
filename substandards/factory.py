"""
Substandard Handler Factory

Registry of handler classes keyed by substandard id. Simple handlers are
created once; context-aware handlers are created per deployment context,
so one process can serve several denylists. Deployments map issued policy
ids to the substandard (and context) that registered them.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple, Type

from registry.schema import RegistryNode
from txbuilder.exceptions import MalformedRequestError, NotFoundError
from txbuilder.protocol import ProtocolBuilder
from txbuilder.scripts import Blueprint

from .base import SubstandardHandler
from .context import SubstandardContext, context_from_dict
from .dummy import DummySubstandardHandler
from .freeze_and_seize import FreezeAndSeizeHandler


logger = logging.getLogger(__name__)

DEFAULT_HANDLERS = (DummySubstandardHandler, FreezeAndSeizeHandler)

Deployment = Tuple[str, Optional[SubstandardContext]]


class SubstandardHandlerFactory:
    """
    Factory for substandard handlers.

    Args:
        protocol: Protocol builders handed to every handler
        blueprints: Compiled validators per substandard id
    """

    def __init__(self, protocol: ProtocolBuilder, blueprints: Dict[str, Blueprint]):
        self.protocol = protocol
        self.blueprints = {k.lower(): v for k, v in blueprints.items()}
        self._handler_classes: Dict[str, Type[SubstandardHandler]] = {}
        self._simple_handlers: Dict[str, SubstandardHandler] = {}
        self._lock = threading.RLock()
        self._deployments: Dict[bytes, Deployment] = {}

        for handler_class in DEFAULT_HANDLERS:
            if handler_class.substandard_id in self.blueprints:
                self.register_handler(handler_class)

    def register_handler(self, handler_class: Type[SubstandardHandler]):
        substandard_id = handler_class.substandard_id.lower()
        if substandard_id not in self.blueprints:
            raise MalformedRequestError(f"No blueprint loaded for substandard {substandard_id}")
        with self._lock:
            self._handler_classes[substandard_id] = handler_class
            self._simple_handlers.pop(substandard_id, None)
        kind = "context-aware" if handler_class.requires_context else "simple"
        logger.info(f"Registered {kind} substandard: {substandard_id}")

    def has_handler(self, substandard_id: str) -> bool:
        return substandard_id.lower() in self._handler_classes

    def requires_context(self, substandard_id: str) -> bool:
        return self._handler_class(substandard_id).requires_context

    def registered_substandards(self) -> List[str]:
        return sorted(self._handler_classes)

    def _handler_class(self, substandard_id: str) -> Type[SubstandardHandler]:
        handler_class = self._handler_classes.get(substandard_id.lower())
        if handler_class is None:
            raise NotFoundError(f"Unknown substandard: {substandard_id}")
        return handler_class

    def get_handler(self, substandard_id: str,
                    context: Optional[SubstandardContext] = None) -> SubstandardHandler:
        """
        Handler for ``substandard_id``.

        Simple handlers ignore ``context``; context-aware handlers get a new
        instance bound to it.
        """
        normalized = substandard_id.lower()
        handler_class = self._handler_class(normalized)
        if not handler_class.requires_context:
            with self._lock:
                handler = self._simple_handlers.get(normalized)
                if handler is None:
                    handler = handler_class(self.protocol, self.blueprints[normalized])
                    self._simple_handlers[normalized] = handler
            return handler
        return handler_class(self.protocol, self.blueprints[normalized], context)

    def handler_from_config(self, substandard_id: str, config: Optional[dict]) -> SubstandardHandler:
        return self.get_handler(substandard_id, context_from_dict(substandard_id, config))

    def record_deployment(self, policy_id: bytes, substandard_id: str,
                          context: Optional[SubstandardContext] = None):
        self._handler_class(substandard_id)
        with self._lock:
            self._deployments[policy_id] = (substandard_id.lower(), context)
        logger.debug(f"Recorded deployment {policy_id.hex()} -> {substandard_id}")

    def deployments(self) -> Dict[bytes, Deployment]:
        with self._lock:
            return dict(self._deployments)

    def handler_for_policy(self, policy_id: bytes,
                           node: Optional[RegistryNode] = None) -> Optional[SubstandardHandler]:
        """
        Resolve the handler serving a registered policy.

        The deployment record wins; otherwise the registry node's transfer
        logic is matched against every known handler and deployment context.
        """
        deployments = self.deployments()
        deployment = deployments.get(policy_id)
        if deployment is not None:
            return self.get_handler(*deployment)
        if node is None:
            return None

        candidates = [self.get_handler(sid) for sid, cls in self._handler_classes.items()
                      if not cls.requires_context]
        candidates.extend(self.get_handler(sid, ctx) for sid, ctx in deployments.values()
                          if ctx is not None and getattr(ctx, "has_denylist", True))
        for handler in candidates:
            if handler.handles(node):
                logger.debug(f"Policy {policy_id.hex()} resolved to {handler.substandard_id} by transfer logic")
                return handler
        return None

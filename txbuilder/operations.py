"""
Programmable Tokens - Operations Service

Entry point for callers: validates requests, resolves the substandard that
serves them, builds the unsigned transaction and reports the result as a
TransactionContext. Retryable failures (stale or missing state) are retried
after a state refresh; every other error is returned as a typed error.
A registration becomes a known deployment only once its transaction is
confirmed.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from registry.schema import RegistryNode

from .builder import UnsignedTxPlan
from .exceptions import MalformedRequestError, NotFoundError, NotRegisteredError, ProtocolError
from .ledger import UTxO
from .protocol import LogicInvocation, ProtocolBuilder
from .requests import (
    BlacklistInitRequest,
    BlacklistRequest,
    BurnRequest,
    MintRequest,
    RegisterRequest,
    SeizeRequest,
    TransferRequest,
    parse_request,
)


logger = logging.getLogger(__name__)

FREEZE_AND_SEIZE = "freeze-and-seize"

Request = Union[Dict[str, Any], Any]


@dataclass
class TransactionContext:
    """Result of one operation."""
    unsigned_tx: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    successful: bool = False
    error_code: Optional[str] = None
    error: Optional[str] = None
    plan: Optional[UnsignedTxPlan] = field(default=None, repr=False)

    @classmethod
    def ok(cls, plan: UnsignedTxPlan) -> "TransactionContext":
        return cls(
            unsigned_tx=plan.cbor_hex,
            metadata={"fee": plan.transaction.fee, **plan.metadata.to_dict()},
            successful=True,
            plan=plan,
        )

    @classmethod
    def typed_error(cls, error: ProtocolError) -> "TransactionContext":
        return cls(successful=False, error_code=error.code, error=error.reason)

    def to_dict(self) -> Dict[str, Any]:
        if not self.successful:
            return {"successful": False, "error_code": self.error_code, "error": self.error}
        return {"successful": True, "unsigned_tx": self.unsigned_tx, "metadata": self.metadata}


class TokenOperationsService:
    """
    Operations over programmable tokens.

    Args:
        protocol: Protocol builders over the state collaborator
        factory: Substandard handler factory
        max_retries: Retries of a build failing with a retryable error
    """

    def __init__(self, protocol: ProtocolBuilder, factory, max_retries: int = 3):
        self.protocol = protocol
        self.factory = factory
        self.max_retries = max_retries
        self._stats_lock = threading.Lock()
        self._stats = {
            "operations": 0,
            "successful": 0,
            "failed": 0,
            "retries": 0,
        }
        self._pending_lock = threading.Lock()
        self._pending_deployments: Dict[bytes, Tuple[bytes, str, Any]] = {}
        protocol.state.add_confirmation_callback(self.confirm)

    # Resolution

    def _registry_node(self, policy_id: bytes) -> RegistryNode:
        record = self.protocol.registry().get(policy_id)
        if record is None:
            raise NotRegisteredError(f"Policy {policy_id.hex()} is not registered")
        return record.node

    def handler_for_policy(self, policy_id: bytes):
        """
        Raises:
            NotRegisteredError: If the policy has no registry node
            NotFoundError: If no known substandard serves it
        """
        node = self._registry_node(policy_id)
        handler = self.factory.handler_for_policy(policy_id, node)
        if handler is None:
            raise NotFoundError(f"No substandard handles policy {policy_id.hex()}")
        return handler

    def resolve_transfer_logic(self, policy_id: bytes, node: RegistryNode,
                               selected: List[UTxO]) -> LogicInvocation:
        handler = self.factory.handler_for_policy(policy_id, node)
        if handler is None:
            raise NotFoundError(f"No substandard handles policy {policy_id.hex()}")
        return handler.transfer_invocation(policy_id, node, selected)

    # Execution

    def _execute(self, operation: str, build: Callable[[], UnsignedTxPlan]) -> TransactionContext:
        with self._stats_lock:
            self._stats["operations"] += 1

        for attempt in range(self.max_retries + 1):
            try:
                plan = build()
            except ProtocolError as e:
                if e.retryable and attempt < self.max_retries:
                    with self._stats_lock:
                        self._stats["retries"] += 1
                    logger.warning(f"{operation} attempt {attempt + 1} failed with {e.code}: {e.reason}; retrying")
                    self.protocol.state.refresh()
                    continue
                with self._stats_lock:
                    self._stats["failed"] += 1
                logger.info(f"{operation} failed with {e.code}: {e.reason}")
                return TransactionContext.typed_error(e)

            with self._stats_lock:
                self._stats["successful"] += 1
            return TransactionContext.ok(plan)

    def _request(self, model, request: Request):
        if isinstance(request, model):
            return request
        if not isinstance(request, dict):
            raise MalformedRequestError(f"Expected {model.__name__} or a mapping, got {type(request).__name__}")
        return parse_request(model, request)

    # Operations

    def register(self, request: Request) -> TransactionContext:
        def build():
            req: RegisterRequest = self._request(RegisterRequest, request)
            handler = self.factory.handler_from_config(req.substandard_id, req.substandard_config)
            plan = handler.build_registration(req)
            with self._pending_lock:
                self._pending_deployments[plan.transaction.tx_id] = (
                    bytes.fromhex(plan.metadata.new_policy_id), req.substandard_id, handler.context)
            return plan
        return self._execute("register", build)

    def mint(self, request: Request) -> TransactionContext:
        def build():
            req: MintRequest = self._request(MintRequest, request)
            return self.handler_for_policy(req.policy).build_mint(req)
        return self._execute("mint", build)

    def burn(self, request: Request) -> TransactionContext:
        def build():
            req: BurnRequest = self._request(BurnRequest, request)
            return self.handler_for_policy(req.policy).build_burn(req)
        return self._execute("burn", build)

    def transfer(self, request: Request) -> TransactionContext:
        """Transfers need no handler of their own; each policy's logic is resolved per proof."""
        def build():
            req: TransferRequest = self._request(TransferRequest, request)
            return self.protocol.transfer(req, self.resolve_transfer_logic)
        return self._execute("transfer", build)

    def seize(self, request: Request) -> TransactionContext:
        def build():
            req: SeizeRequest = self._request(SeizeRequest, request)
            handler = self.handler_for_policy(req.policy)
            if not handler.supports_seize():
                raise MalformedRequestError(f"Substandard {handler.substandard_id} does not support seizure")
            return handler.build_seize(req)
        return self._execute("seize", build)

    def blacklist_init(self, request: Request, context: Optional[Dict[str, Any]] = None) -> TransactionContext:
        def build():
            req: BlacklistInitRequest = self._request(BlacklistInitRequest, request)
            return self.factory.handler_from_config(FREEZE_AND_SEIZE, context).build_blacklist_init(req)
        return self._execute("blacklist_init", build)

    def _blacklist_handler(self, req: BlacklistRequest):
        handler = self.handler_for_policy(req.policy)
        if not handler.supports_blacklist():
            raise MalformedRequestError(f"Substandard {handler.substandard_id} has no denylist")
        return handler

    def blacklist_insert(self, request: Request) -> TransactionContext:
        def build():
            req: BlacklistRequest = self._request(BlacklistRequest, request)
            return self._blacklist_handler(req).build_blacklist_insert(req)
        return self._execute("blacklist_insert", build)

    def blacklist_remove(self, request: Request) -> TransactionContext:
        def build():
            req: BlacklistRequest = self._request(BlacklistRequest, request)
            return self._blacklist_handler(req).build_blacklist_remove(req)
        return self._execute("blacklist_remove", build)

    # Confirmation

    def confirm(self, tx_id: bytes) -> bool:
        """
        Record the deployment created by a confirmed registration.

        Returns:
            True if ``tx_id`` was a pending registration
        """
        with self._pending_lock:
            pending = self._pending_deployments.pop(tx_id, None)
        if pending is None:
            return False
        policy_id, substandard_id, context = pending
        self.factory.record_deployment(policy_id, substandard_id, context)
        logger.info(f"Registration {tx_id.hex()} confirmed for policy {policy_id.hex()}")
        return True

    def pending_deployments(self) -> List[bytes]:
        """Policy ids of built registrations not yet confirmed."""
        with self._pending_lock:
            return [policy_id for policy_id, _, _ in self._pending_deployments.values()]

    def get_statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            return dict(self._stats)

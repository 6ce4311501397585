"""Order state machine with actor-aware transition validation.

This module is the single authority on which actor may move an order from
which status to which, and on the field changes each transition writes. It
does not touch the store: ``plan_transition`` turns the order's freshly read
state into a ``TransitionPlan`` (expected status, field changes and claim
conditions) that the repository applies as one conditional update.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Protocol, Tuple
from uuid import UUID

from waterline.core.logging import get_logger
from waterline.database.models.user import UserRole
from waterline.services.orders.enums import OrderStatus

logger = get_logger(__name__)

DEFAULT_DRIVER_NAME = "Driver"


class OrderAction(str, Enum):
    """Operations an actor can invoke on an order."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    REVERT_TO_PENDING = "revert_to_pending"
    ASSIGN_DRIVER = "assign_driver"
    START_DELIVERY = "start_delivery"
    COMPLETE_DELIVERY = "complete_delivery"


@dataclass(frozen=True)
class TransitionRule:
    """Allowed source statuses and resulting status of one action.

    ``target`` is None for actions that do not change status.
    """

    sources: FrozenSet[OrderStatus]
    target: Optional[OrderStatus]


TRANSITIONS: Dict[Tuple[UserRole, OrderAction], TransitionRule] = {
    (UserRole.OWNER, OrderAction.CONFIRM): TransitionRule(
        frozenset({OrderStatus.PENDING}), OrderStatus.CONFIRMED
    ),
    (UserRole.OWNER, OrderAction.CANCEL): TransitionRule(
        frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED}), OrderStatus.CANCELLED
    ),
    (UserRole.OWNER, OrderAction.REVERT_TO_PENDING): TransitionRule(
        frozenset({OrderStatus.CONFIRMED}), OrderStatus.PENDING
    ),
    (UserRole.OWNER, OrderAction.ASSIGN_DRIVER): TransitionRule(
        frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED}), None
    ),
    (UserRole.DRIVER, OrderAction.START_DELIVERY): TransitionRule(
        frozenset({OrderStatus.CONFIRMED}), OrderStatus.OUT_FOR_DELIVERY
    ),
    (UserRole.DRIVER, OrderAction.COMPLETE_DELIVERY): TransitionRule(
        frozenset({OrderStatus.OUT_FOR_DELIVERY}), OrderStatus.DELIVERED
    ),
}

STALE_MESSAGES: Dict[OrderAction, str] = {
    OrderAction.CONFIRM: "This order is no longer pending.",
    OrderAction.CANCEL: "This order can no longer be cancelled.",
    OrderAction.REVERT_TO_PENDING: "This order is no longer confirmed.",
    OrderAction.ASSIGN_DRIVER: (
        "Drivers can only be assigned to pending or confirmed orders."
    ),
    OrderAction.START_DELIVERY: "This delivery is no longer in the confirmed stage.",
    OrderAction.COMPLETE_DELIVERY: "This delivery is not out for delivery yet.",
}

OTHER_DRIVER_MESSAGE = "This delivery is assigned to another driver."


class StateTransitionError(Exception):
    """Raised when an actor may not perform an action on an order."""

    def __init__(
        self,
        message: str,
        current_state: Optional[OrderStatus] = None,
        action: Optional[OrderAction] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.action = action
        self.context = context


class StaleStateError(StateTransitionError):
    """Raised when the order changed underfoot and the action no longer applies.

    Recoverable: the caller should refresh and let the user act again.
    """


class OrderLike(Protocol):
    id: UUID
    status: OrderStatus
    assigned_driver_uid: Optional[str]
    assigned_driver_name: Optional[str]


@dataclass(frozen=True)
class Actor:
    """Principal performing a transition, with its resolved role."""

    uid: str
    role: UserRole
    name: Optional[str] = None


@dataclass(frozen=True)
class Assignee:
    """Driver being assigned to an order."""

    uid: str
    name: Optional[str] = None


@dataclass(frozen=True)
class TransitionPlan:
    """Conditional single-order write produced by the state machine.

    The repository applies ``changes`` only while the stored order still has
    ``expected_status`` and, when set, the expected assignment.
    """

    order_id: UUID
    action: OrderAction
    expected_status: OrderStatus
    changes: Dict[str, Any] = field(default_factory=dict)
    require_unassigned: bool = False
    require_driver_uid: Optional[str] = None

    @property
    def target_status(self) -> OrderStatus:
        return self.changes.get("status", self.expected_status)

    @property
    def is_claim(self) -> bool:
        return self.require_unassigned


class OrderStateMachine:
    """State machine for the water order lifecycle.

    Validates actor/action/status combinations against ``TRANSITIONS`` and
    produces the field changes of each action through per-action side effect
    handlers.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._side_effects: Dict[
            OrderAction,
            Callable[[OrderLike, Actor, Optional[Assignee], Dict[str, Any]], Dict[str, Any]],
        ] = {
            OrderAction.ASSIGN_DRIVER: self._effect_assign_driver,
            OrderAction.START_DELIVERY: self._effect_start_delivery,
            OrderAction.COMPLETE_DELIVERY: self._effect_complete_delivery,
        }

    def rule_for(self, actor: Actor, action: OrderAction) -> TransitionRule:
        """Look up the rule for an actor/action pair.

        Raises:
            StateTransitionError: If the actor's role may never perform the action
        """
        rule = TRANSITIONS.get((actor.role, action))
        if rule is None:
            raise StateTransitionError(
                f"{actor.role.value.capitalize()}s cannot {action.value.replace('_', ' ')} orders.",
                action=action,
                role=actor.role.value,
            )
        return rule

    def validate_transition(
        self, order: OrderLike, actor: Actor, action: OrderAction
    ) -> TransitionRule:
        """Check that ``actor`` may perform ``action`` on ``order`` right now.

        Returns:
            The matching transition rule

        Raises:
            StateTransitionError: If the role may not perform the action at all
            StaleStateError: If the order's status or assignment no longer allows it
        """
        rule = self.rule_for(actor, action)

        if order.status not in rule.sources:
            logger.info(
                "Transition rejected, order state changed",
                order_id=str(order.id),
                action=action.value,
                current_status=order.status.value,
            )
            raise StaleStateError(
                STALE_MESSAGES[action],
                current_state=order.status,
                action=action,
                order_id=str(order.id),
            )

        if (
            actor.role == UserRole.DRIVER
            and order.assigned_driver_uid is not None
            and order.assigned_driver_uid != actor.uid
        ):
            raise StaleStateError(
                OTHER_DRIVER_MESSAGE,
                current_state=order.status,
                action=action,
                order_id=str(order.id),
                assigned_driver_uid=order.assigned_driver_uid,
            )

        return rule

    def plan_transition(
        self,
        order: OrderLike,
        actor: Actor,
        action: OrderAction,
        assignee: Optional[Assignee] = None,
    ) -> TransitionPlan:
        """Validate and build the conditional write for an action.

        Args:
            order: Order state read immediately before planning
            actor: Principal performing the action
            action: Action requested
            assignee: Driver to assign, required for ASSIGN_DRIVER

        Returns:
            TransitionPlan to hand to the repository

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        rule = self.validate_transition(order, actor, action)

        changes: Dict[str, Any] = {"updated_at": self._clock()}
        if rule.target is not None:
            changes["status"] = rule.target

        side_effect = self._side_effects.get(action)
        plan_kwargs: Dict[str, Any] = {}
        if side_effect is not None:
            plan_kwargs = side_effect(order, actor, assignee, changes)

        plan = TransitionPlan(
            order_id=order.id,
            action=action,
            expected_status=order.status,
            changes=changes,
            **plan_kwargs,
        )

        logger.debug(
            "Transition planned",
            order_id=str(order.id),
            action=action.value,
            transition=f"{order.status.value}->{plan.target_status.value}",
            claim=plan.is_claim,
        )

        return plan

    # Side Effects

    def _effect_assign_driver(
        self,
        order: OrderLike,
        actor: Actor,
        assignee: Optional[Assignee],
        changes: Dict[str, Any],
    ) -> Dict[str, Any]:
        if assignee is None:
            raise StateTransitionError(
                "A driver must be selected for assignment.",
                current_state=order.status,
                action=OrderAction.ASSIGN_DRIVER,
            )
        changes["assigned_driver_uid"] = assignee.uid
        changes["assigned_driver_name"] = assignee.name or DEFAULT_DRIVER_NAME
        return {}

    def _effect_start_delivery(
        self,
        order: OrderLike,
        actor: Actor,
        assignee: Optional[Assignee],
        changes: Dict[str, Any],
    ) -> Dict[str, Any]:
        if order.assigned_driver_uid is None:
            # claim: the unassigned queue path
            changes["assigned_driver_uid"] = actor.uid
            changes["assigned_driver_name"] = actor.name or DEFAULT_DRIVER_NAME
            return {"require_unassigned": True}
        return {"require_driver_uid": actor.uid}

    def _effect_complete_delivery(
        self,
        order: OrderLike,
        actor: Actor,
        assignee: Optional[Assignee],
        changes: Dict[str, Any],
    ) -> Dict[str, Any]:
        if order.assigned_driver_uid is None:
            return {}
        return {"require_driver_uid": actor.uid}


def get_order_state_machine() -> OrderStateMachine:
    """Factory function to create an OrderStateMachine instance."""
    return OrderStateMachine()

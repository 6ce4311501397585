"""
WebSocket live views.

Each stream authenticates with the ``token`` query parameter, checks the
principal's role before sending anything, then forwards every snapshot of
one LiveQuery as a full replacement:

    {"type": "snapshot", "sequence": 3, "data": [...]}
    {"type": "status", "state": "syncing", "message": "..."}
    {"type": "error", "code": "needs_index", "message": "..."}

Clients may send ``{"type": "identity", "token": "..."}`` when their
identity token is refreshed and ``{"type": "ping"}`` to keep the socket
alive. Role streams re-check the principal's role before every snapshot and
on a timer, closing with 4403 once it is lost and with 4401 when its
identity no longer verifies. A new identity for a different principal
closes the stream with 4409 so the client reconnects.
"""

import asyncio
import json
from typing import Any, Callable, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketState

from waterline.api.deps import Broker, Capabilities, SessionFactoryDep
from waterline.core.config import get_settings
from waterline.core.identity import IdentityError, Principal, verify_identity_token
from waterline.core.logging import get_logger
from waterline.database.models.user import UserRole
from waterline.database.queries import StoreUnavailableError
from waterline.realtime.broker import BrokerError
from waterline.realtime.live_query import LiveQuery, Snapshot
from waterline.realtime.views import (
    RoleGuard,
    contact_card_view,
    customer_orders_view,
    driver_orders_view,
    orders_by_status_view,
    settings_view,
    today_metrics_view,
    unassigned_orders_view,
)
from waterline.services.auth.role_resolver import AccessDeniedError
from waterline.services.orders.enums import OrderStatus
from waterline.services.orders.state_machine import Actor

logger = get_logger(__name__)

router = APIRouter(prefix="/live", tags=["Live"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_ACCESS_DENIED = 4403
CLOSE_IDENTITY_CHANGED = 4409
CLOSE_TRY_AGAIN = 1013


class IdentityChanged(Exception):
    """Raised when a stream's client presents another principal's token."""


def snapshot_message(snapshot: Snapshot) -> Optional[dict[str, Any]]:
    """Wire message for a snapshot, or None for the final ``closed`` one."""
    if snapshot.state == "ok":
        return {
            "type": "snapshot",
            "sequence": snapshot.sequence,
            "data": jsonable_encoder(snapshot.data),
        }
    if snapshot.state == "needs_index":
        return {"type": "error", "code": "needs_index", "message": snapshot.message}
    if snapshot.state == "syncing":
        return {"type": "status", "state": "syncing", "message": snapshot.message}
    return None


def denied_message(error: AccessDeniedError) -> dict[str, Any]:
    return {
        "type": "error",
        "code": "access_denied",
        "message": str(error),
        "sign_out": True,
        "redirect": error.redirect,
    }


class LiveStream:
    """
    Pumps one LiveQuery into one WebSocket.

    Runs until the first of its tasks ends: snapshot forwarding, client
    message handling and, for role streams, a periodic role re-check.
    Profiles are edited outside the service, so role streams also re-check
    before forwarding each snapshot.
    """

    def __init__(
        self,
        websocket: WebSocket,
        principal: Optional[Principal] = None,
        guard: Optional[RoleGuard] = None,
        recheck_interval: float = 30.0,
    ):
        self.websocket = websocket
        self.principal = principal
        self.guard = guard
        self.recheck_interval = recheck_interval

    async def run(self, live_query: LiveQuery) -> None:
        async with live_query:
            tasks = [
                asyncio.create_task(self._forward(live_query)),
                asyncio.create_task(self._receive()),
            ]
            if self.guard is not None:
                tasks.append(asyncio.create_task(self._watch_role()))

            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                error = task.exception()
                if error is not None:
                    raise error

    async def _forward(self, live_query: LiveQuery) -> None:
        sequence = 0
        while True:
            snapshot = await live_query.slot.wait_next(sequence)
            sequence = snapshot.sequence
            message = snapshot_message(snapshot)
            if message is None:
                return
            if self.guard is not None and snapshot.state == "ok":
                await self.guard.check()
            await self.websocket.send_json(message)

    async def _receive(self) -> None:
        while True:
            try:
                message = await self.websocket.receive_json()
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed live message")
                continue
            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "ping":
                await self.websocket.send_json({"type": "pong"})
            elif kind == "identity":
                await self._switch_identity(str(message.get("token") or ""))
            else:
                logger.debug("Ignoring unknown live message", message_type=kind)

    async def _switch_identity(self, token: str) -> None:
        principal = verify_identity_token(token)
        if self.principal is not None and principal.uid != self.principal.uid:
            raise IdentityChanged(principal.uid)
        self.principal = principal
        if self.guard is not None:
            await self.guard.reauthenticate(token)

    async def _watch_role(self) -> None:
        while True:
            await asyncio.sleep(self.recheck_interval)
            try:
                await self.guard.check()
            except StoreUnavailableError as e:
                logger.warning("Role re-check deferred, store unavailable", error=str(e))


async def _close(websocket: WebSocket, code: int, message: Optional[dict] = None) -> None:
    if websocket.application_state != WebSocketState.CONNECTED:
        return
    if websocket.client_state != WebSocketState.CONNECTED:
        return
    if message is not None:
        await websocket.send_json(message)
    await websocket.close(code=code)


async def serve_stream(
    websocket: WebSocket,
    build: Callable[[Optional[Actor], Optional[Principal]], LiveQuery],
    token: Optional[str] = None,
    guard_factory: Optional[Callable[[Principal], RoleGuard]] = None,
    authenticated: bool = True,
) -> None:
    """
    Accept ``websocket`` and serve the LiveQuery returned by ``build``.

    Args:
        websocket: Client connection
        build: Builds the view from the checked actor and principal
        token: Identity token from the query string
        guard_factory: Role guard for role streams, None otherwise
        authenticated: Whether a verified identity is needed at all
    """
    await websocket.accept()

    principal: Optional[Principal] = None
    guard: Optional[RoleGuard] = None
    actor: Optional[Actor] = None
    try:
        if authenticated:
            principal = verify_identity_token(token or "")
        if guard_factory is not None:
            guard = guard_factory(principal)
            actor = await guard.check()
        stream = LiveStream(
            websocket, principal, guard, get_settings().live_role_recheck_seconds
        )
        await stream.run(build(actor, principal))
    except WebSocketDisconnect:
        logger.info(
            "Live stream disconnected",
            path=websocket.url.path,
            principal_id=principal.uid if principal else None,
        )
    except IdentityError as e:
        await _close(
            websocket,
            CLOSE_UNAUTHENTICATED,
            {"type": "error", "code": "unauthenticated", "message": str(e)},
        )
    except AccessDeniedError as e:
        await _close(websocket, CLOSE_ACCESS_DENIED, denied_message(e))
    except IdentityChanged:
        await _close(
            websocket,
            CLOSE_IDENTITY_CHANGED,
            {"type": "error", "code": "identity_changed", "message": "Please reconnect."},
        )
    except (BrokerError, StoreUnavailableError) as e:
        logger.warning("Live stream lost its store", path=websocket.url.path, error=str(e))
        await _close(
            websocket,
            CLOSE_TRY_AGAIN,
            {"type": "status", "state": "syncing", "message": str(e)},
        )
    else:
        await _close(websocket, 1000)


@router.websocket("/owner/orders")
async def owner_orders_stream(
    websocket: WebSocket,
    broker: Broker,
    capabilities: Capabilities,
    session_factory: SessionFactoryDep,
    status: OrderStatus = Query(OrderStatus.PENDING),
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: orders_by_status_view(
            broker, session_factory, status, capabilities
        ),
        token=token,
        guard_factory=lambda principal: RoleGuard(
            session_factory, UserRole.OWNER, principal
        ),
    )


@router.websocket("/owner/dashboard")
async def owner_dashboard_stream(
    websocket: WebSocket,
    broker: Broker,
    capabilities: Capabilities,
    session_factory: SessionFactoryDep,
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: today_metrics_view(
            broker, session_factory, get_settings().business_tz, capabilities
        ),
        token=token,
        guard_factory=lambda principal: RoleGuard(
            session_factory, UserRole.OWNER, principal
        ),
    )


@router.websocket("/driver/orders")
async def driver_orders_stream(
    websocket: WebSocket,
    broker: Broker,
    capabilities: Capabilities,
    session_factory: SessionFactoryDep,
    status: OrderStatus = Query(OrderStatus.CONFIRMED),
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: driver_orders_view(
            broker, session_factory, actor.uid, status, capabilities
        ),
        token=token,
        guard_factory=lambda principal: RoleGuard(
            session_factory, UserRole.DRIVER, principal
        ),
    )


@router.websocket("/driver/unassigned")
async def driver_unassigned_stream(
    websocket: WebSocket,
    broker: Broker,
    capabilities: Capabilities,
    session_factory: SessionFactoryDep,
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: unassigned_orders_view(
            broker, session_factory, capabilities
        ),
        token=token,
        guard_factory=lambda principal: RoleGuard(
            session_factory, UserRole.DRIVER, principal
        ),
    )


@router.websocket("/customer/orders")
async def customer_orders_stream(
    websocket: WebSocket,
    broker: Broker,
    capabilities: Capabilities,
    session_factory: SessionFactoryDep,
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: customer_orders_view(
            broker, session_factory, principal.uid, capabilities
        ),
        token=token,
    )


@router.websocket("/contact")
async def contact_stream(
    websocket: WebSocket,
    broker: Broker,
    session_factory: SessionFactoryDep,
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: contact_card_view(broker, session_factory),
        authenticated=False,
    )


@router.websocket("/settings")
async def settings_stream(
    websocket: WebSocket,
    broker: Broker,
    session_factory: SessionFactoryDep,
    token: Optional[str] = Query(None),
) -> None:
    await serve_stream(
        websocket,
        lambda actor, principal: settings_view(broker, session_factory),
        token=token,
    )

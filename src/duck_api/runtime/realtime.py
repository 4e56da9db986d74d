"""
WebSocket fan-out of storage events.

The hub subscribes to the lifecycle events of a ``DuckStorage`` and forwards
each one to connected clients as ``{"event": ..., "payload": ...}``. Who gets
an event is decided per entity by a delivery rule:

- ``True``: every connection
- ``False``: nobody
- a list of group names: connections in those groups
- a callable ``(event, payload) -> bool | list[str]``
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastapi.encoders import jsonable_encoder

from duck_api.core.errors import ApiError
from duck_api.runtime.context import maybe_await
from duck_api.runtime.storage import EVENTS

if TYPE_CHECKING:
    from fastapi import WebSocket

    from duck_api.runtime.storage import DuckStorage

logger = logging.getLogger(__name__)

DeliveryRule = Any
GroupResolver = Callable[["WebSocket"], Any]


# =============================================================================
# Messages and connections
# =============================================================================


@dataclass
class RealtimeMessage:
    """An event pushed to clients."""

    event: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "payload": jsonable_encoder(self.payload)}


@dataclass
class Connection:
    """A WebSocket connection."""

    id: str
    websocket: WebSocket
    groups: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _as_groups(value: Any) -> list[str]:
    if not value or value is True:
        return []
    if isinstance(value, str):
        return [value]
    return [str(group) for group in value]


# =============================================================================
# Hub
# =============================================================================


@dataclass
class RealtimeHub:
    """
    Tracks WebSocket connections and delivers storage events to them.

    Attributes:
        default_delivery: Rule for entities without their own rule
        delivery: Delivery rule per entity name
        group_resolver: ``(websocket) -> group | list[str] | None`` deciding
            which groups a new connection joins
    """

    default_delivery: DeliveryRule = True
    delivery: dict[str, DeliveryRule] = field(default_factory=dict)
    group_resolver: GroupResolver | None = None

    _connections: dict[str, Connection] = field(default_factory=dict)
    _groups: dict[str, set[str]] = field(default_factory=dict)  # group -> connection_ids

    # =========================================================================
    # Connections
    # =========================================================================

    async def connect(self, websocket: WebSocket, groups: Iterable[str] = ()) -> str:
        """Accept ``websocket`` and register it in ``groups``."""
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = Connection(id=connection_id, websocket=websocket)
        for group in groups:
            self.join(connection_id, group)
        logger.debug(f"WebSocket {connection_id} connected")
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        for group in list(connection.groups):
            members = self._groups.get(group)
            if members:
                members.discard(connection_id)
                if not members:
                    del self._groups[group]
        logger.debug(f"WebSocket {connection_id} disconnected")

    def join(self, connection_id: str, group: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        connection.groups.add(group)
        self._groups.setdefault(group, set()).add(connection_id)

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def group_members(self, group: str) -> list[str]:
        return list(self._groups.get(group, set()))

    # =========================================================================
    # Delivery
    # =========================================================================

    async def destinations(self, event: str, payload: Mapping[str, Any]) -> bool | list[str]:
        """Evaluate the delivery rule of the payload's entity."""
        rule = self.delivery.get(payload.get("entityName", ""), self.default_delivery)
        if callable(rule):
            rule = await maybe_await(rule(event, payload))
        if isinstance(rule, bool):
            return rule
        return _as_groups(rule)

    async def dispatch(self, event: str, payload: Mapping[str, Any]) -> int:
        """
        Deliver one storage event.

        Returns:
            Number of connections the message was sent to
        """
        destination = await self.destinations(event, payload)
        if not destination:
            return 0

        if destination is True:
            targets = list(self._connections)
        else:
            targets = sorted({cid for group in destination for cid in self._groups.get(group, ())})

        message = RealtimeMessage(event=event, payload=dict(payload))
        sent_count = 0
        for connection_id in targets:
            if await self._send(connection_id, message):
                sent_count += 1
        return sent_count

    async def _send(self, connection_id: str, message: RealtimeMessage) -> bool:
        connection = self._connections.get(connection_id)
        if not connection:
            return False
        try:
            await connection.websocket.send_json(message.to_dict())
            return True
        except Exception:
            # Closed socket, forget it
            logger.debug(f"Dropping dead WebSocket {connection_id}")
            self.disconnect(connection_id)
            return False

    def wire(
        self, storage: DuckStorage, delivery: Mapping[str, DeliveryRule] | None = None
    ) -> None:
        """Subscribe to every lifecycle event of ``storage``."""
        if delivery:
            self.delivery.update(delivery)

        def listener(event: str) -> Callable[[dict[str, Any]], Any]:
            async def forward(payload: dict[str, Any]) -> None:
                await self.dispatch(event, payload)

            return forward

        for event in EVENTS:
            storage.on(event, listener(event))

    # =========================================================================
    # Endpoint
    # =========================================================================

    async def serve(self, websocket: WebSocket) -> None:
        """WebSocket endpoint: register the client and answer pings until it leaves."""
        groups: Any = None
        if self.group_resolver is not None:
            try:
                groups = await maybe_await(self.group_resolver(websocket))
            except ApiError as exc:
                logger.debug(f"Refused WebSocket: {exc.message}")
                await websocket.close(code=1008)
                return
        connection_id = await self.connect(websocket, _as_groups(groups))
        try:
            async for text in websocket.iter_text():
                try:
                    data = json.loads(text)
                except ValueError:
                    logger.debug(f"Ignoring non-JSON frame from WebSocket {connection_id}")
                    continue
                if isinstance(data, dict) and data.get("event") == "ping":
                    await websocket.send_json(RealtimeMessage(event="pong").to_dict())
        finally:
            self.disconnect(connection_id)

"""Websocket gateway effect manager.

Serves the UI over aiohttp: one websocket endpoint multiplexing any number of
clients, a heartbeat route and a program upload route. Every connection gets
a private outbound channel; a dispatcher task owns the id-to-channel registry
and forwards each :class:`SendTo` command to exactly one connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, NoReturn, Optional, Union

from aiohttp import WSMsgType, hdrs, web

from ..core import (
    ChannelClosed,
    EffectManager,
    EffectManagerStopped,
    Selector,
    Sender,
    channel,
)

LOGGER = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 3600


@dataclass(frozen=True, slots=True)
class ClientConnected:
    client_id: str


@dataclass(frozen=True, slots=True)
class ClientData:
    client_id: str
    payload: str


@dataclass(frozen=True, slots=True)
class ClientDisconnected:
    client_id: str


@dataclass(frozen=True, slots=True)
class FileUpload:
    contents: str


GatewayMessage = Union[ClientConnected, ClientData, ClientDisconnected, FileUpload]


@dataclass(frozen=True, slots=True)
class SendTo:
    """Push ``payload`` as one text frame to the client ``client_id``."""

    client_id: str
    payload: str


@dataclass(frozen=True, slots=True)
class _Register:
    client_id: str
    outbound: Sender[SendTo]


@dataclass(frozen=True, slots=True)
class _Unregister:
    client_id: str


_Registration = Union[_Register, _Unregister]


class ClientRegistry:
    """Maps client ids to their outbound channels.

    Only the gateway's dispatcher task touches an instance, so no locking is
    needed.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, Sender[SendTo]] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def register(self, client_id: str, outbound: Sender[SendTo]) -> None:
        LOGGER.info("Registered client %s", client_id)
        self._clients[client_id] = outbound

    def unregister(self, client_id: str) -> None:
        if self._clients.pop(client_id, None) is not None:
            LOGGER.info("Unregistered client %s", client_id)

    async def route(self, command: SendTo) -> bool:
        """Forward ``command`` to its client.

        Returns:
            ``True`` when the command was queued for the connection, ``False``
            when the client is unknown or its channel has closed.
        """

        outbound = self._clients.get(command.client_id)
        if outbound is None:
            LOGGER.debug("No client %s; dropping payload", command.client_id)
            return False

        try:
            await outbound.send(command)
        except ChannelClosed:
            LOGGER.warning("Client %s went away; pruning", command.client_id)
            self._clients.pop(command.client_id, None)
            return False
        return True


def _identity(value: Any) -> Any:
    return value


class GatewayEffectManager(EffectManager[Any, Any]):
    """Effect manager for the websocket/HTTP front door."""

    name = "gateway"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        to_gateway: Callable[[Any], Optional[SendTo]] = _identity,
        from_gateway: Callable[[GatewayMessage], Any] = _identity,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name=name)
        self._host = host
        self._port = port
        self._to_gateway = to_gateway
        self._from_gateway = from_gateway

        self._registry = ClientRegistry()
        self._registrations, self._registration_events = channel(
            f"{self.name}.registrations"
        )
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_websocket)
        app.router.add_get("/status", self._handle_status)
        app.router.add_post("/upload", self._handle_upload)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Gateway listening on http://%s:%s/ws", self._host, self._port)

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def run(self) -> NoReturn:
        await self.start()
        try:
            await self.dispatch()
        finally:
            await self.stop()

    async def dispatch(self) -> NoReturn:
        """Own the client registry and forward commands until the runtime goes away.

        Registration events are listed first so a connection registered in the
        same instant as a command addressed to it is known before the command
        is routed.
        """

        selector: Selector[Any] = Selector([self._registration_events, self._commands])
        try:
            while True:
                received = await selector.next()
                if received is None:
                    continue

                index, item = received
                if index == 0:
                    self._apply_registration(item)
                    continue

                command = self._to_gateway(item)
                if command is None:
                    LOGGER.debug("Ignoring non-gateway command %r", item)
                    continue
                await self._registry.route(command)
        except ChannelClosed as exc:
            LOGGER.warning("Gateway dispatcher stopping: %s", exc)
            raise EffectManagerStopped(f"{self.name}: {exc}") from exc
        finally:
            selector.close()

    def _apply_registration(self, event: _Registration) -> None:
        if isinstance(event, _Register):
            self._registry.register(event.client_id, event.outbound)
        elif isinstance(event, _Unregister):
            self._registry.unregister(event.client_id)
        else:
            LOGGER.warning("Unknown registration event %r", event)

    async def _handle_status(self, request: web.Request) -> web.Response:
        now = datetime.now(timezone.utc)
        return web.json_response({"time": now.isoformat()})

    async def _handle_upload(self, request: web.Request) -> web.Response:
        if hdrs.CONTENT_TYPE not in request.headers:
            raise web.HTTPUnprocessableEntity(text="missing-filetype")

        if request.content_type.split("/", 1)[0] != "text":
            LOGGER.warning("Rejecting upload of type %s", request.content_type)
            raise web.HTTPUnprocessableEntity(text="invalid-filetype")

        size = request.content_length or 0
        if size == 0 or size > MAX_UPLOAD_BYTES:
            LOGGER.warning("Rejecting upload of %d bytes", size)
            raise web.HTTPUnprocessableEntity(text="file-too-large")

        body = await request.read()
        if not body or len(body) > MAX_UPLOAD_BYTES:
            raise web.HTTPUnprocessableEntity(text="file-too-large")

        try:
            contents = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            LOGGER.warning("Upload is not valid utf-8: %s", exc)
            raise web.HTTPUnprocessableEntity(text="invalid-file") from exc

        try:
            await self._publish(self._from_gateway(FileUpload(contents)))
        except ChannelClosed as exc:
            LOGGER.warning("Unable to forward upload: %s", exc)
            raise web.HTTPServiceUnavailable(text="unavailable") from exc

        LOGGER.info("Accepted upload of %d bytes", len(body))
        return web.Response(status=200)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        client_id = str(uuid.uuid4())
        outbound, inbound = channel(f"{self.name}.client.{client_id}")
        LOGGER.info("Websocket client %s connected", client_id)

        try:
            await self._publish(self._from_gateway(ClientConnected(client_id)))
            await self._registrations.send(_Register(client_id, outbound))
        except ChannelClosed as exc:
            LOGGER.warning("Refusing client %s: %s", client_id, exc)
            await ws.close()
            return ws

        reading: Optional[asyncio.Task[Any]] = None
        writing: Optional[asyncio.Task[SendTo]] = None
        try:
            while True:
                if reading is None:
                    reading = asyncio.ensure_future(ws.receive())
                if writing is None:
                    writing = asyncio.ensure_future(inbound.recv())

                done, _ = await asyncio.wait(
                    {reading, writing}, return_when=asyncio.FIRST_COMPLETED
                )

                if reading in done:
                    message, reading = reading.result(), None
                    if message.type == WSMsgType.TEXT:
                        await self._publish(
                            self._from_gateway(ClientData(client_id, message.data))
                        )
                    elif message.type in (
                        WSMsgType.CLOSE,
                        WSMsgType.CLOSING,
                        WSMsgType.CLOSED,
                        WSMsgType.ERROR,
                    ):
                        LOGGER.info("Websocket client %s closed the stream", client_id)
                        break
                    else:
                        LOGGER.debug("Ignoring %s frame from %s", message.type, client_id)

                if writing in done:
                    command, writing = writing.result(), None
                    try:
                        await ws.send_str(command.payload)
                    except (ConnectionError, RuntimeError) as exc:
                        LOGGER.warning("Unable to send to client %s: %s", client_id, exc)
                        break
        except ChannelClosed as exc:
            LOGGER.warning("Websocket client %s loop ended: %s", client_id, exc)
        finally:
            for task in (reading, writing):
                if task is not None:
                    task.cancel()
            inbound.close()
            with contextlib.suppress(ChannelClosed):
                await self._publish(self._from_gateway(ClientDisconnected(client_id)))
            await self._registrations.send(_Unregister(client_id))
            await ws.close()
            LOGGER.info("Websocket client %s disconnected", client_id)

        return ws

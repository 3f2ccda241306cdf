import asyncio
import json
import logging
from typing import Any, Dict, Set

import websockets

from FramePump import FramePump

logger = logging.getLogger(__name__)


class Server:
    """
    Manages WebSocket connections between the engine and an external UI.

    Inbound: control messages that set the engine inputs (active sticker,
    snap toggle, manual scale/rotation).
    Outbound: a placement telemetry payload after every rendered frame.

    Message formats (JSON):
        {"type": "set_sticker", "sticker": "<path|url|data uri>" | null}
        {"type": "set_snap", "enabled": true}
        {"type": "set_adjustment", "scale": 1.2, "rotation": 15}
    """

    def __init__(self, pump: FramePump) -> None:
        self.pump: FramePump = pump
        # Using a set ensures uniqueness and allows O(1) adds/removes.
        self.connected_clients: Set[Any] = set()
        # Keep track of background send tasks to prevent garbage collection
        self.background_tasks: Set[asyncio.Task] = set()

    async def register_client(self, websocket: websockets.ServerConnection) -> None:
        """
        Handler for new WebSocket connections. Reads control messages until
        the client goes away.

        Args:
            websocket (websockets.ServerConnection): The active connection object.
        """
        self.connected_clients.add(websocket)
        logger.info("Client connected. Total: %d", len(self.connected_clients))

        try:
            async for message in websocket:
                self.handle_message(message)
        except websockets.ConnectionClosed:
            pass
        finally:
            # Runs however the connection ends, so we never send to dead sockets later.
            self.connected_clients.discard(websocket)
            logger.info("Client disconnected. Total: %d", len(self.connected_clients))

    def handle_message(self, message: Any) -> bool:
        """
        Applies one control message to the engine.

        Returns:
            bool: True if the message was understood and applied.
        """
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-JSON control message")
            return False
        if not isinstance(data, dict):
            logger.warning("Ignoring control message that is not an object")
            return False

        kind = data.get("type")
        try:
            if kind == "set_sticker":
                sticker = data.get("sticker")
                if sticker is not None and not isinstance(sticker, str):
                    raise ValueError("sticker must be a string or null")
                self.pump.set_sticker(sticker or None)
            elif kind == "set_snap":
                enabled = data.get("enabled")
                if not isinstance(enabled, bool):
                    raise ValueError("enabled must be a boolean")
                self.pump.set_snap_enabled(enabled)
            elif kind == "set_adjustment":
                self.pump.set_manual_adjustment(
                    float(data.get("scale", 1.0)),
                    float(data.get("rotation", 0.0)),
                )
            else:
                logger.warning("Ignoring unknown control message type: %r", kind)
                return False
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring invalid %s message: %s", kind, e)
            return False
        return True

    def construct_payload(self, snapshot: Dict[str, Any]) -> str:
        """
        Formats the engine telemetry into a JSON string suitable for transmission.
        """
        return json.dumps(snapshot)

    def broadcast(self, pump: FramePump) -> None:
        """
        Frame listener: sends the latest telemetry to every client.

        Fire-and-Forget pattern: sends are scheduled as tasks so network I/O
        never blocks the next camera frame.
        """
        if not self.connected_clients:
            return
        payload = self.construct_payload(pump.snapshot())
        for ws in list(self.connected_clients):
            task = asyncio.create_task(ws.send(payload))
            self.background_tasks.add(task)
            # Remove task from set when done to free memory
            task.add_done_callback(self._discard_task)

    def _discard_task(self, task: asyncio.Task) -> None:
        self.background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Telemetry send failed: %s", task.exception())

    def serve(self, host: str, port: int) -> Any:
        """
        Wrapper around `websockets.serve`.

        Returns an async context manager that runs the server loop.

        Usage:
            async with server.serve(host, port):
                await pump.run()
        """
        return websockets.serve(self.register_client, host, port)

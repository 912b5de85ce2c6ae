from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..sim.core.agent import SECONDS_PER_DAY
from ..sim.core.config import SimulationConfig
from ..sim.core.world import World
from ..sim.types.metrics import TickMetrics

logger = logging.getLogger(__name__)

MAX_PENDING_FRAMES = 32


@dataclass(frozen=True)
class Frame:
    tick: int
    payload: str


class FrameStream:
    """Fan-out of serialized world frames to websocket subscribers.

    Frames are only retained while at least one client is subscribed, and at
    most ``max_pending`` of them. A client that falls behind the retained
    window resumes from the oldest frame still held.
    """

    def __init__(self, max_pending: int = MAX_PENDING_FRAMES) -> None:
        self._frames: deque[Frame] = deque(maxlen=max(1, max_pending))
        self._delivered: Dict[Any, int] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def subscribers(self) -> int:
        return len(self._delivered)

    def pending_ticks(self) -> List[int]:
        return [frame.tick for frame in self._frames]

    async def subscribe(self, client: Any, current: Frame) -> None:
        self._delivered[client] = current.tick
        await client.send_text(current.payload)

    def unsubscribe(self, client: Any) -> None:
        self._delivered.pop(client, None)
        if not self._delivered:
            self._frames.clear()

    def rewind(self) -> None:
        self._frames.clear()
        for client in self._delivered:
            self._delivered[client] = -1

    async def publish(self, frame: Frame) -> None:
        if not self._delivered:
            return
        async with self._lock:
            self._frames.append(frame)
        gone = []
        for client in list(self._delivered):
            try:
                await self._deliver(client)
            except WebSocketDisconnect:
                gone.append(client)
        for client in gone:
            logger.info("Dropping disconnected client")
            self.unsubscribe(client)

    async def acknowledge(self, tick: int) -> None:
        async with self._lock:
            while self._frames and self._frames[0].tick <= tick:
                self._frames.popleft()

    async def _deliver(self, client: Any) -> None:
        last = self._delivered.get(client, -1)
        async with self._lock:
            pending = [frame for frame in self._frames if frame.tick > last]
        for frame in pending:
            await client.send_text(frame.payload)
            last = frame.tick
        self._delivered[client] = last


class SimulationController:
    """Owns one world and advances it on a timer while running."""

    def __init__(
        self,
        config: SimulationConfig,
        frame_interval: int = 1,
        tick_interval: float = 0.1,
        max_pending: int = MAX_PENDING_FRAMES,
    ):
        self.world = World(config)
        self.frame_interval = max(1, frame_interval)
        self.tick_interval = tick_interval
        self.running = False
        self.tick = 0
        self.speed_multiplier = 1.0
        self.stream = FrameStream(max_pending)
        self._world_lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None

    async def start(self) -> None:
        if self._timer is None:
            self._timer = asyncio.create_task(self._run())
        self.running = True

    async def shutdown(self) -> None:
        self.running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def step_once(self) -> TickMetrics:
        frame = None
        async with self._world_lock:
            metrics = self.world.step(self.tick)
            self.tick += 1
            if self.stream.subscribers and self.tick % self.frame_interval == 0:
                frame = self.frame()
        if frame is not None:
            await self.stream.publish(frame)
        return metrics

    async def reset(self) -> None:
        async with self._world_lock:
            self.world.reset()
            self.tick = 0
            frame = self.frame()
        self.stream.rewind()
        await self.stream.publish(frame)
        logger.info("Simulation reset")

    async def handle_message(self, message: str) -> None:
        try:
            payload = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed client message")
            return
        if isinstance(payload, dict) and payload.get("type") == "ack" and isinstance(payload.get("tick"), int):
            await self.stream.acknowledge(payload["tick"])

    def frame(self) -> Frame:
        snapshot = self.world.snapshot(self.tick)
        payload = {
            "type": "snapshot",
            "tick": snapshot.tick,
            "sim_day": self.world.sim_seconds / SECONDS_PER_DAY,
            "metrics": asdict(snapshot.metrics),
            "world": asdict(snapshot.world),
            "metadata": asdict(snapshot.metadata),
            "agents": snapshot.agents,
            "leaves": snapshot.leaves,
        }
        return Frame(tick=snapshot.tick, payload=json.dumps(payload))

    def status(self) -> Dict[str, Any]:
        world = self.world
        tree = world.tree
        return {
            "running": self.running,
            "tick": self.tick,
            "speed": self.speed_multiplier,
            "sim_day": world.sim_seconds / SECONDS_PER_DAY,
            "population": len(tree),
            "total_infections": len(world.contacts),
            "total_deaths": world.total_deaths,
            "leaves": sum(1 for _ in tree.leaves()),
            "nodes": tree.node_count,
            "subscribers": self.stream.subscribers,
            "pending_frames": len(self.stream),
        }

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval / self.speed_multiplier)
            if self.running:
                await self.step_once()


class SpeedRequest(BaseModel):
    multiplier: float = 1.0


controller = SimulationController(SimulationConfig())


@asynccontextmanager
async def lifespan(_: FastAPI):
    await controller.start()
    yield
    await controller.shutdown()


app = FastAPI(title="Outbreak Web Simulation", lifespan=lifespan)


@app.get("/api/status")
async def status() -> JSONResponse:
    return JSONResponse(controller.status())


@app.get("/api/snapshot")
async def snapshot() -> Response:
    return Response(controller.frame().payload, media_type="application/json")


@app.get("/api/quadtree.svg")
async def quadtree_svg() -> Response:
    return Response(controller.world.tree.render_svg(), media_type="image/svg+xml")


@app.get("/api/contacts.dot")
async def contacts_dot() -> Response:
    return Response(controller.world.contacts.to_dot(), media_type="text/vnd.graphviz")


@app.post("/api/control/speed")
async def set_speed(request: SpeedRequest) -> JSONResponse:
    controller.speed_multiplier = max(0.1, min(5.0, request.multiplier))
    return JSONResponse({"multiplier": controller.speed_multiplier})


@app.post("/api/control/{action}")
async def control(action: str) -> JSONResponse:
    if action == "start":
        controller.running = True
    elif action == "stop":
        controller.running = False
    elif action == "step":
        await controller.step_once()
    elif action == "reset":
        await controller.reset()
    else:
        raise HTTPException(status_code=404, detail=f"Unknown control action: {action}")
    return JSONResponse({"running": controller.running, "tick": controller.tick})


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    await controller.stream.subscribe(websocket, controller.frame())
    try:
        while True:
            await controller.handle_message(await websocket.receive_text())
    except WebSocketDisconnect:
        controller.stream.unsubscribe(websocket)


__all__ = ["app", "controller"]

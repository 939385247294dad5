"""HTTP server: LINE webhook plus health endpoints and keep-alive"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
from aiohttp import web

from line.core.line_api import verify_signature

logger = logging.getLogger(__name__)

EventSink = Callable[[list[dict[str, Any]]], Awaitable[None]]


class WebhookServer:
    """aiohttp server for the LINE webhook.

    ``POST /webhook`` answers 401 for a bad signature and 200 otherwise, even
    when handling failed, so LINE never disables the webhook.
    """

    def __init__(
        self,
        channel_secret: str,
        on_events: EventSink,
        games_count: Callable[[], int] = lambda: 0,
        host: str = "0.0.0.0",
        port: int = 3000,
        self_ping_url: str | None = None,
        self_ping_minutes: int = 60,
    ):
        self.channel_secret = channel_secret
        self.on_events = on_events
        self.games_count = games_count
        self.host = host
        self.port = port
        self.self_ping_url = self_ping_url
        self.self_ping_minutes = self_ping_minutes
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._background: list[asyncio.Task] = []
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/ping", self.handle_ping)
        self.app.router.add_post("/webhook", self.handle_webhook)

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "message": "Badminton Bot is running", "timestamp": self._timestamp()}
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness for Render and the self-ping"""
        return web.json_response(
            {
                "status": "ok",
                "timestamp": self._timestamp(),
                "uptime": round(time.time() - self._start_time, 3),
                "gamesCount": self.games_count(),
            }
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    async def handle_webhook(self, request: web.Request) -> web.Response:
        body = await request.read()
        signature = request.headers.get("X-Line-Signature", "")
        if not verify_signature(self.channel_secret, body, signature):
            logger.warning("Webhook signature verification failed")
            return web.Response(status=401, text="Invalid signature")

        try:
            payload = json.loads(body or b"{}")
            events = payload.get("events") or []
            await self.on_events(events)
        except Exception as e:
            logger.exception(f"Webhook Error: {e}")
        return web.Response(text="OK")

    async def _heartbeat(self) -> None:
        """Periodic heartbeat, logs uptime and games count"""
        while True:
            await asyncio.sleep(300)
            uptime = int(time.time() - self._start_time)
            logger.info(f"Heartbeat: uptime={uptime}s, games={self.games_count()}")

    async def _ping_self(self, client: httpx.AsyncClient) -> None:
        try:
            response = await client.get(self.self_ping_url or "")
            if response.status_code != 200:
                logger.warning(f"[PING] Self-ping returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"[PING] Self-ping failed: {e}")

    async def _keep_alive(self) -> None:
        """Ping our own /health so an idle free-tier instance does not sleep"""
        async with httpx.AsyncClient(timeout=10.0) as client:
            await asyncio.sleep(5)
            while True:
                await self._ping_self(client)
                await asyncio.sleep(self.self_ping_minutes * 60)

    async def start(self) -> None:
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()

            self._background.append(asyncio.create_task(self._heartbeat()))
            if self.self_ping_url:
                self._background.append(asyncio.create_task(self._keep_alive()))
                logger.info(
                    f"Auto-wake timer started (every {self.self_ping_minutes} minutes)",
                    extra={"audit": True},
                )

            logger.info(f"Server started on {self.host}:{self.port}")
            logger.info(f"  POST http://{self.host}:{self.port}/webhook - LINE webhook")
            logger.info(f"  GET  http://{self.host}:{self.port}/health - Health check")

        except Exception as e:
            logger.exception(f"Failed to start server: {e}")
            raise

    async def stop(self) -> None:
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        if self.runner:
            try:
                await self.runner.cleanup()
                logger.info("Server stopped")
            except Exception as e:
                logger.exception(f"Error stopping server: {e}")

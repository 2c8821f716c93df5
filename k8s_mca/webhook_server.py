"""HTTPS server exposing the mutating admission webhook."""

import asyncio
import json
import logging
import ssl
from typing import Optional

from aiohttp import web

from k8s_mca.controllers.webhook_controller import MCAWebhookController

logger = logging.getLogger(__name__)


class WebhookServer:
    """aiohttp application serving /mutate and /health."""

    def __init__(self, controller: MCAWebhookController):
        self.controller = controller
        self.app = web.Application()
        self.setup_routes()

    def setup_routes(self):
        self.app.router.add_post("/mutate", self.handle_mutate)
        self.app.router.add_get("/health", self.handle_health)

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def handle_mutate(self, request: web.Request) -> web.Response:
        """Handle mutating admission webhook requests."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to unmarshal admission review: {e}")
            return web.Response(text="Failed to unmarshal admission review", status=400)

        if not isinstance(body, dict):
            logger.error("Failed to unmarshal admission review: body is not an object")
            return web.Response(text="Failed to unmarshal admission review", status=400)

        return web.json_response(self.controller.mutate(body))

    async def start_server(self, host: str = "0.0.0.0", port: int = 8443, ssl_context: Optional[ssl.SSLContext] = None):
        """Serve the webhook until cancelled."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, host, port, ssl_context=ssl_context)
        await site.start()
        logger.info(f"Webhook server started on {host}:{port}")

        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await runner.cleanup()

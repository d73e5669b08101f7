"""Minimal health-check HTTP server for hosted deployments."""
from __future__ import annotations

import logging

from aiohttp import web

from oversessions.session import SessionRegistry

logger = logging.getLogger(__name__)

REGISTRY_KEY = web.AppKey("registry", SessionRegistry)


async def health_handler(request: web.Request) -> web.Response:
    return web.Response(text="OK")


async def sessions_handler(request: web.Request) -> web.Response:
    states = request.app[REGISTRY_KEY].states()
    return web.json_response(
        {
            "tracked": len(states),
            "with_battle_tag": sum(1 for state in states if state.battle_tag),
            "playing": sum(1 for state in states if state.playing),
        }
    )


def build_health_app(registry: SessionRegistry) -> web.Application:
    app = web.Application()
    app[REGISTRY_KEY] = registry
    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/sessions", sessions_handler)
    return app


async def start_health_server(registry: SessionRegistry, port: int = 10000) -> web.AppRunner:
    """Start a lightweight HTTP server for platform health checks."""
    runner = web.AppRunner(build_health_app(registry))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info("Health check server started on port %d", port)
    return runner

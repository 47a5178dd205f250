import random
from datetime import datetime

from aiohttp import web
from loguru import logger


class StatusServer:
    """Serves a simulated lifecycle for every resource it is asked about.

    A resource reports ``creating`` until ``completion_time`` seconds after its
    first status request, then ``active``.
    """

    def __init__(
        self,
        completion_time: float = 10.0,
        failure_rate: float = 0.0,
        throttle_rate: float = 0.0,
    ):
        self.started_at = {}
        self.completion_time = completion_time
        self.failure_rate = failure_rate
        self.throttle_rate = throttle_rate
        self.request_count = 0
        self.runner = None
        self.app = web.Application()
        self.app.router.add_get("/status/{resource_id}", self.handle_status)
        self.logger = logger

    async def handle_status(self, request):
        resource_id = request.match_info["resource_id"]
        self.request_count += 1
        start_time = self.started_at.setdefault(resource_id, datetime.now())

        if random.random() < self.throttle_rate:
            self.logger.info(f"Throttling status request for {resource_id}")
            return web.json_response({"message": "slow down"}, status=429)

        if random.random() < self.failure_rate:
            self.logger.info(f"Returning failed status for {resource_id}")
            return web.json_response({"status": "failed"})

        elapsed = (datetime.now() - start_time).total_seconds()

        if elapsed >= self.completion_time:
            self.logger.info(f"Returning active status for {resource_id}")
            return web.json_response({"status": "active"})
        else:
            self.logger.info(
                f"Returning creating status for {resource_id} (elapsed: {elapsed:.1f}s)"
            )
            return web.json_response({"status": "creating"})

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.logger.info("Server stopped")

import asyncio

import aiohttp
from resource_waiter.http_fetcher import HttpStatusFetcher, http_request
from resource_waiter.models import OutcomeKind, WaiterConfig
from resource_waiter.waiter import ResourceWaiter
from status_server import StatusServer


async def status_changed(status_response):
    print(f"Status changed to: {status_response.status}")
    print(f"Fetch latency: {status_response.elapsed_time:.6f}s")


async def main():
    PORT = 8000
    server = StatusServer(completion_time=20.0, failure_rate=0.05, throttle_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = WaiterConfig(
        initial_delay=1.0, max_delay=8.0, backoff_multiplier=3.0, timeout=60.0
    )
    waiter = ResourceWaiter(on_status_change=status_changed)
    cancel_event = asyncio.Event()

    async with aiohttp.ClientSession() as session:
        fetcher = HttpStatusFetcher(f"http://localhost:{PORT}", session)
        request = http_request(
            "example-table",
            fetcher,
            ready_statuses={"active"},
            terminal_statuses={"failed"},
            config=config,
        )
        outcome = await waiter.wait(request, cancel_event=cancel_event)

    print(f"Outcome: {outcome.kind.value} after {outcome.attempts} attempt(s)")
    print(f"Total time: {outcome.elapsed_time:.6f}s")
    if outcome.kind == OutcomeKind.transport_error:
        print(f"Error occurred: {outcome.error}")

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())

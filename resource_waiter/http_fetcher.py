import asyncio
from typing import Iterable, Optional
from urllib.parse import quote

import aiohttp
from loguru import logger
from resource_waiter.errors import TransientFetchError
from resource_waiter.models import PollRequest, StatusResponse, WaiterConfig
from yarl import URL

TRANSIENT_HTTP_STATUSES = frozenset({429, 500, 502, 503, 504})


class HttpStatusFetcher:
    """Reads a resource's status from ``GET {base_url}/status/{resource_id}``"""

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        status_field: str = "status",
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.status_field = status_field
        self.logger = logger

    async def __call__(self, resource_id: str) -> StatusResponse:
        """Fetches the status of a resource from the server"""
        start_time = asyncio.get_running_loop().time()
        # Resource ids such as ARNs contain slashes; keep them in one path segment
        url = URL(
            f"{self.base_url}/status/{quote(resource_id, safe='')}", encoded=True
        )

        try:
            async with self.session.get(url) as response:
                response.raise_for_status()

                data = await response.json()
                elapsed_time = asyncio.get_running_loop().time() - start_time

                return StatusResponse(
                    resource_id=resource_id,
                    status=str(data[self.status_field]),
                    raw_response=data,
                    elapsed_time=elapsed_time,
                )
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            if e.status in TRANSIENT_HTTP_STATUSES:
                raise TransientFetchError(f"HTTP {e.status} from {url}") from e
            raise
        except aiohttp.ClientConnectionError as e:
            self.logger.error(f"Connection error at {url}: {e}")
            raise TransientFetchError(f"Could not connect to {url}") from e
        except asyncio.TimeoutError as e:
            self.logger.error(f"Timed out reading {url}")
            raise TransientFetchError(f"Request to {url} timed out") from e


def http_request(
    resource_id: str,
    fetcher: HttpStatusFetcher,
    ready_statuses: Iterable[str],
    terminal_statuses: Optional[Iterable[str]] = None,
    config: Optional[WaiterConfig] = None,
) -> PollRequest:
    """Build a ``PollRequest`` for a resource whose status is served over HTTP"""
    ready = frozenset(ready_statuses)
    terminal = frozenset(terminal_statuses or ())

    return PollRequest(
        resource_id=resource_id,
        fetch_status=fetcher,
        is_ready=lambda response: response.status in ready,
        is_terminal_failure=(
            (lambda response: response.status in terminal) if terminal else None
        ),
        config=config or WaiterConfig(),
    )

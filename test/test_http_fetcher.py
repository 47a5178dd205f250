import asyncio
from typing import AsyncGenerator, Tuple

import aiohttp
import pytest
import pytest_asyncio
from resource_waiter.errors import TransientFetchError
from resource_waiter.http_fetcher import HttpStatusFetcher, http_request
from resource_waiter.models import OutcomeKind, WaiterConfig
from resource_waiter.waiter import ResourceWaiter
from status_server import StatusServer

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(
    unused_tcp_port_factory,
) -> AsyncGenerator[Tuple[StatusServer, int], None]:
    """Start and yield a test StatusServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = StatusServer(completion_time=1.0)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[aiohttp.ClientSession, None]:
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def config() -> WaiterConfig:
    """Provide default configuration for the waiter."""
    return WaiterConfig(
        initial_delay=0.2,
        max_delay=0.5,
        backoff_multiplier=2.0,
        timeout=10.0,
        max_transient_failures=2,
    )


def build_request(base_url, session, config, resource_id="movies"):
    return http_request(
        resource_id,
        HttpStatusFetcher(base_url, session),
        ready_statuses={"active"},
        terminal_statuses={"failed"},
        config=config,
    )


@pytest.mark.asyncio
async def test_successful_completion(server, session, config):
    """Test normal successful completion flow."""
    status_changes = []
    server_instance, port = server

    async def status_callback(response):
        status_changes.append(response.status)

    waiter = ResourceWaiter(on_status_change=status_callback)
    request = build_request(BASE_URL_TEMPLATE.format(port), session, config)

    outcome = await waiter.wait(request)

    assert outcome.kind == OutcomeKind.ready
    assert outcome.status.status == "active"
    assert outcome.status.raw_response == {"status": "active"}
    assert outcome.elapsed_time > 0
    assert status_changes == ["creating", "active"]


@pytest.mark.asyncio
async def test_failed_resource(server, session, config):
    """A resource reporting a failed status is a terminal failure."""
    server_instance, port = server
    server_instance.failure_rate = 1.0
    request = build_request(BASE_URL_TEMPLATE.format(port), session, config)

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.terminal_failure
    assert outcome.status.status == "failed"
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_timeout_scenario(server, session, config):
    """Test timeout handling."""
    server_instance, port = server
    server_instance.completion_time = 30.0
    config.timeout = 1.0
    request = build_request(BASE_URL_TEMPLATE.format(port), session, config)

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.timed_out
    assert outcome.status.status == "creating"
    with pytest.raises(TimeoutError):
        outcome.unwrap()


@pytest.mark.asyncio
async def test_throttling_is_transient(server, session, config):
    """429 responses are retried until the transient failure bound is exceeded."""
    server_instance, port = server
    server_instance.throttle_rate = 1.0
    config.initial_delay = 0.05
    config.max_delay = 0.05
    request = build_request(BASE_URL_TEMPLATE.format(port), session, config)

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.transport_error
    assert isinstance(outcome.error, TransientFetchError)
    assert isinstance(outcome.error.__cause__, aiohttp.ClientResponseError)
    assert outcome.error.__cause__.status == 429
    assert server_instance.request_count == config.max_transient_failures + 1


@pytest.mark.asyncio
async def test_not_found_is_fatal(server, session, config):
    """A 404 is not evidence of a transient problem and stops polling at once."""
    server_instance, port = server
    request = build_request(
        BASE_URL_TEMPLATE.format(port) + "/missing", session, config
    )

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.transport_error
    assert isinstance(outcome.error, aiohttp.ClientResponseError)
    assert outcome.error.status == 404
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_arn_resource_id(server, session, config):
    """Resource ids containing slashes and colons reach the status route intact."""
    server_instance, port = server
    server_instance.completion_time = 0.0
    arn = "arn:aws:dynamodb:us-west-2:123456789012:table/movies"
    request = build_request(BASE_URL_TEMPLATE.format(port), session, config, arn)

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.ready
    assert outcome.resource_id == arn
    assert outcome.status.resource_id == arn
    assert list(server_instance.started_at) == [arn]


@pytest.mark.asyncio
async def test_server_unavailable(session, config, unused_tcp_port_factory):
    """Test behavior when server is not available."""
    config.initial_delay = 0.05
    config.max_delay = 0.05
    request = build_request(
        BASE_URL_TEMPLATE.format(unused_tcp_port_factory()), session, config
    )

    outcome = await ResourceWaiter().wait(request)

    assert outcome.kind == OutcomeKind.transport_error
    assert isinstance(outcome.error.__cause__, aiohttp.ClientConnectionError)
    assert outcome.attempts == config.max_transient_failures + 1


@pytest.mark.asyncio
async def test_multiple_resources(server, session, config):
    """Test several resources polled simultaneously."""
    server_instance, port = server
    base_url = BASE_URL_TEMPLATE.format(port)
    waiter = ResourceWaiter()

    outcomes = await asyncio.gather(
        *[
            waiter.wait(build_request(base_url, session, config, f"table-{index}"))
            for index in range(3)
        ]
    )

    assert {outcome.resource_id for outcome in outcomes} == {
        "table-0",
        "table-1",
        "table-2",
    }
    for outcome in outcomes:
        assert outcome.kind == OutcomeKind.ready

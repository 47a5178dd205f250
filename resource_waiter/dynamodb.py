import asyncio
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, EndpointConnectionError
from loguru import logger
from resource_waiter.errors import TransientFetchError
from resource_waiter.models import PollOutcome, PollRequest, StatusResponse, WaiterConfig
from resource_waiter.waiter import ResourceWaiter

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)

# A table in one of these states will never reach ACTIVE on its own
TERMINAL_TABLE_STATUSES = frozenset(
    {"DELETING", "ARCHIVING", "ARCHIVED", "INACCESSIBLE_ENCRYPTION_CREDENTIALS"}
)

TABLE_DELETED = "DELETED"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class TableStatusFetcher:
    """Reads ``Table.TableStatus`` through ``describe_table``.

    The aiobotocore client is used as-is, so credentials, request signing and
    per-request retries stay with botocore. When ``missing_status`` is set, a
    missing table is reported as that status instead of an error.
    """

    def __init__(self, client: Any, missing_status: Optional[str] = None):
        self.client = client
        self.missing_status = missing_status
        self.logger = logger

    async def __call__(self, table_name: str) -> StatusResponse:
        start_time = asyncio.get_running_loop().time()
        try:
            response = await self.client.describe_table(TableName=table_name)
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceNotFoundException" and self.missing_status is not None:
                return StatusResponse(
                    resource_id=table_name,
                    status=self.missing_status,
                    raw_response={},
                    elapsed_time=asyncio.get_running_loop().time() - start_time,
                )
            self.logger.error(f"DescribeTable {table_name} failed with {code}: {e}")
            if code in TRANSIENT_ERROR_CODES:
                raise TransientFetchError(f"DescribeTable throttled: {code}") from e
            raise
        except EndpointConnectionError as e:
            self.logger.error(f"Could not reach DynamoDB endpoint: {e}")
            raise TransientFetchError(str(e)) from e

        return StatusResponse(
            resource_id=table_name,
            status=response["Table"]["TableStatus"],
            raw_response=response,
            elapsed_time=asyncio.get_running_loop().time() - start_time,
        )


async def wait_for_table_active(
    client: Any,
    table_name: str,
    config: Optional[WaiterConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
    waiter: Optional[ResourceWaiter] = None,
) -> PollOutcome:
    """Wait until the table has left CREATING/UPDATING and is ACTIVE"""
    request = PollRequest(
        resource_id=table_name,
        fetch_status=TableStatusFetcher(client),
        is_ready=lambda response: response.status == "ACTIVE",
        is_terminal_failure=lambda response: response.status in TERMINAL_TABLE_STATUSES,
        config=config or WaiterConfig(),
    )
    return await (waiter or ResourceWaiter()).wait(request, cancel_event=cancel_event)


async def wait_for_table_deleted(
    client: Any,
    table_name: str,
    config: Optional[WaiterConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
    waiter: Optional[ResourceWaiter] = None,
) -> PollOutcome:
    request = PollRequest(
        resource_id=table_name,
        fetch_status=TableStatusFetcher(client, missing_status=TABLE_DELETED),
        is_ready=lambda response: response.status == TABLE_DELETED,
        config=config or WaiterConfig(),
    )
    return await (waiter or ResourceWaiter()).wait(request, cancel_event=cancel_event)


async def _table_exists(client: Any, table_name: str) -> bool:
    paginator = client.get_paginator("list_tables")
    async for page in paginator.paginate():
        if table_name in page.get("TableNames", []):
            return True
    return False


async def ensure_table(
    client: Any,
    table_name: str,
    key_schema: List[Dict[str, str]],
    attribute_definitions: List[Dict[str, str]],
    read_capacity_units: int = 10,
    write_capacity_units: int = 10,
    config: Optional[WaiterConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
    waiter: Optional[ResourceWaiter] = None,
) -> PollOutcome:
    """Create the table unless it already exists, then wait for it to be ACTIVE"""
    if await _table_exists(client, table_name):
        logger.info(f"Table {table_name} already exists")
    else:
        logger.info(f"Requesting creation of table {table_name}")
        try:
            await client.create_table(
                TableName=table_name,
                KeySchema=key_schema,
                AttributeDefinitions=attribute_definitions,
                ProvisionedThroughput={
                    "ReadCapacityUnits": read_capacity_units,
                    "WriteCapacityUnits": write_capacity_units,
                },
            )
        except ClientError as e:
            # Created by someone else since the listing
            if _error_code(e) != "ResourceInUseException":
                raise
            logger.info(f"Table {table_name} was created concurrently")

    return await wait_for_table_active(
        client, table_name, config=config, cancel_event=cancel_event, waiter=waiter
    )

# Boto should get credentials from ~/.aws/credentials or the environment
import argparse
import asyncio

from aiobotocore.session import get_session
from resource_waiter.dynamodb import ensure_table
from resource_waiter.models import WaiterConfig


async def go(table_name: str, region: str):
    session = get_session()
    async with session.create_client("dynamodb", region_name=region) as client:
        outcome = await ensure_table(
            client,
            table_name,
            key_schema=[
                {"AttributeName": "year", "KeyType": "HASH"},
                {"AttributeName": "title", "KeyType": "RANGE"},
            ],
            attribute_definitions=[
                {"AttributeName": "year", "AttributeType": "N"},
                {"AttributeName": "title", "AttributeType": "S"},
            ],
            config=WaiterConfig(initial_delay=1.0, max_delay=8.0, timeout=120.0),
        )
        status = outcome.unwrap()
        print(f"Table {table_name} is {status.status}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("-t", "--table-name", required=True)
    parser.add_argument("-d", "--default-region", default="us-west-2")
    args = parser.parse_args()
    asyncio.run(go(args.table_name, args.default_region))

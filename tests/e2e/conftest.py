"""
E2E test fixtures for shardtail.

These tests require a Kinesis-compatible endpoint such as LocalStack:

    docker run -d -p 4566:4566 localstack/localstack
    SHARDTAIL_E2E_TESTS=1 KINESIS_ENDPOINT_URL=http://localhost:4566 pytest tests/e2e
"""

import asyncio
import os
import uuid

import pytest
import pytest_asyncio
from aiobotocore.session import get_session

ENDPOINT_URL = os.environ.get("KINESIS_ENDPOINT_URL", "http://localhost:4566")
REGION = os.environ.get("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """LocalStack accepts any credentials."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", os.environ.get("AWS_ACCESS_KEY_ID", "test"))
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", os.environ.get("AWS_SECRET_ACCESS_KEY", "test"))


@pytest_asyncio.fixture
async def kinesis_client():
    """Raw aiobotocore client for test setup."""
    session = get_session()
    async with session.create_client(
        "kinesis", region_name=REGION, endpoint_url=ENDPOINT_URL
    ) as client:
        yield client


@pytest_asyncio.fixture
async def stream_name(kinesis_client):
    """Create a two-shard stream for one test and delete it afterwards."""
    name = f"shardtail-e2e-{uuid.uuid4().hex[:8]}"
    await kinesis_client.create_stream(StreamName=name, ShardCount=2)

    for _ in range(60):
        summary = await kinesis_client.describe_stream_summary(StreamName=name)
        if summary["StreamDescriptionSummary"]["StreamStatus"] == "ACTIVE":
            break
        await asyncio.sleep(0.5)
    else:
        pytest.fail(f"Stream {name} did not become ACTIVE")

    yield name

    await kinesis_client.delete_stream(StreamName=name, EnforceConsumerDeletion=True)

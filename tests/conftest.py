import logging

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from helpers import FakeProvider
from mempool_dumpster.config import CatalogConfig, ConvertConfig, FetchConfig, SyncConfig


# Configure logging for tests
@pytest.fixture(autouse=True)
def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


@pytest.fixture
def provider():
    return FakeProvider()


@pytest_asyncio.fixture
async def server(provider):
    server = TestServer(provider.app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def config(server):
    return SyncConfig(
        catalog=CatalogConfig(
            base_url=str(server.make_url("/ethereum/mainnet")),
            index_url=str(server.make_url("/index.html")),
            http_req_timeout_millis=5_000,
        ),
        fetch=FetchConfig(
            max_num_retries=2,
            retry_base_ms=1,
            retry_ceiling_ms=5,
            http_req_timeout_millis=5_000,
            chunk_size=64,
        ),
        convert=ConvertConfig(max_skipped_fraction=0.25),
        max_concurrency=3,
    )

"""Integration test fixtures using Docker.

Starts a throwaway Redis container for the session. Tests are skipped when
the Docker daemon is not reachable.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import pytest
import pytest_asyncio

REDIS_IMAGE = "redis:7-alpine"


@dataclass
class RedisContainer:
    """Handle for the running Redis container."""

    container: Any
    host: str

    @property
    def port(self) -> int:
        self.container.reload()
        bindings = self.container.attrs["NetworkSettings"]["Ports"].get("6379/tcp")
        if not bindings:
            raise RuntimeError(f"Port 6379/tcp not exposed on {self.container.short_id}")
        return int(bindings[0]["HostPort"])

    @property
    def url(self) -> str:
        return f"redis://{self.host}:{self.port}/0"


def _docker_host(client: Any) -> str:
    base_url = client.api.base_url
    if base_url.startswith(("unix://", "npipe://", "http+docker://")):
        return "localhost"
    return urlparse(base_url).hostname or "localhost"


@pytest.fixture(scope="session")
def docker_client() -> Iterator[Any]:
    """Create a Docker client or skip if Docker is unavailable."""
    docker = pytest.importorskip("docker")
    try:
        client = docker.from_env()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def redis_container(docker_client: Any) -> Iterator[RedisContainer]:
    """Start Redis for the test session."""
    container = docker_client.containers.run(
        REDIS_IMAGE, detach=True, ports={"6379/tcp": None}
    )
    try:
        yield RedisContainer(container=container, host=_docker_host(docker_client))
    finally:
        container.remove(force=True, v=True)


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    return redis_container.url


@pytest_asyncio.fixture
async def redis_client(redis_url: str) -> AsyncIterator[Any]:
    """Create a Redis client for tests; the database is flushed afterwards."""
    import redis.asyncio as redis

    client = redis.from_url(redis_url)
    await _wait_for_redis(client)
    yield client
    await client.flushdb()
    await client.aclose()


async def _wait_for_redis(client: Any, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)

import sys
from pathlib import Path
from typing import Any, Callable, List

import pytest
from dotenv import find_dotenv, load_dotenv

from toolbridge import ServerConfig, ToolCatalog, ToolDescriptor
from toolbridge.core.config import PoolSettings, ProtocolTimeouts

# Load environment variables from .env file, if the project has one
env_file = find_dotenv(usecwd=True)
if env_file:
    load_dotenv(env_file)

FAKE_SERVER = Path(__file__).parent / "servers" / "fake_server.py"


def make_server(server_id: str = "fake", mode: str = "normal", **kwargs: Any) -> ServerConfig:
    """Build a ServerConfig launching the fake tool server with this interpreter."""
    args = [str(FAKE_SERVER), "--tag", server_id]
    if mode != "normal":
        args += ["--mode", mode]
    return ServerConfig(id=server_id, name=f"Fake {server_id}", command=sys.executable, args=args, **kwargs)


@pytest.fixture
def server_factory() -> Callable[..., ServerConfig]:
    return make_server


@pytest.fixture
def fake_server() -> ServerConfig:
    return make_server()


@pytest.fixture
def fast_timeouts() -> ProtocolTimeouts:
    return ProtocolTimeouts(initialize=5.0, list_tools=5.0, call_tool=5.0, settle=0.05, shutdown_grace=1.0)


@pytest.fixture
def fast_pool_settings() -> PoolSettings:
    return PoolSettings(max_connections=2, max_attempts=3, base_backoff=0.01, max_backoff=0.05)


@pytest.fixture
def descriptors() -> List[ToolDescriptor]:
    return [
        ToolDescriptor(name="echo", description="Echo text.", input_schema={"type": "object"}, server_id="alpha"),
        ToolDescriptor(name="add", description="Add numbers.", input_schema={"type": "object"}, server_id="alpha"),
        ToolDescriptor(name="search", description="Search.", input_schema={"type": "object"}, server_id="beta"),
    ]


@pytest.fixture
def catalog(descriptors: List[ToolDescriptor]) -> ToolCatalog:
    tool_catalog = ToolCatalog()
    tool_catalog.register_server_tools("alpha", descriptors[:2])
    tool_catalog.register_server_tools("beta", descriptors[2:])
    return tool_catalog

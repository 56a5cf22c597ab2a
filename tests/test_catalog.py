from typing import List

import pytest

from toolbridge import ToolCatalog, ToolDescriptor
from toolbridge.core.exceptions import ToolNotFoundError, ToolRegistrationError


def test_register_and_resolve(catalog: ToolCatalog) -> None:
    assert len(catalog) == 3
    descriptor = catalog.resolve("echo")
    assert descriptor is not None
    assert descriptor.server_id == "alpha"
    assert "search" in catalog
    assert catalog.resolve("missing") is None


def test_resolve_accepts_qualified_name(catalog: ToolCatalog) -> None:
    descriptor = catalog.resolve("beta.search")
    assert descriptor is not None
    assert descriptor.name == "search"
    assert catalog.resolve("alpha.search") is None


def test_duplicate_registration_raises(descriptors: List[ToolDescriptor]) -> None:
    catalog = ToolCatalog()
    catalog.register(descriptors[0])
    with pytest.raises(ToolRegistrationError, match="already registered"):
        catalog.register(descriptors[0].model_copy(update={"server_id": "gamma"}))


def test_namespaced_catalog_keeps_equal_names_apart() -> None:
    catalog = ToolCatalog(namespaced=True)
    catalog.register(ToolDescriptor(name="search", server_id="web"))
    catalog.register(ToolDescriptor(name="search", server_id="docs"))

    assert set(catalog.tools) == {"web.search", "docs.search"}
    resolved = catalog.resolve("docs.search")
    assert resolved is not None and resolved.server_id == "docs"


def test_register_server_tools_replaces_and_skips_clashes(catalog: ToolCatalog) -> None:
    count = catalog.register_server_tools(
        "beta",
        [
            ToolDescriptor(name="search", server_id="beta"),
            ToolDescriptor(name="echo", server_id="beta"),
            ToolDescriptor(name="fetch", server_id="beta"),
        ],
    )

    # "echo" belongs to alpha and is skipped
    assert count == 2
    assert catalog.resolve("echo").server_id == "alpha"  # type: ignore[union-attr]
    assert catalog.server_ids() == ["alpha", "beta"]


def test_unregister(catalog: ToolCatalog) -> None:
    catalog.unregister("echo")
    assert "echo" not in catalog
    with pytest.raises(ToolNotFoundError):
        catalog.unregister("echo")

    catalog.unregister_server("beta")
    assert catalog.server_ids() == ["alpha"]


def test_tool_object_exports_function_specs(catalog: ToolCatalog) -> None:
    specs = catalog.tool_object
    assert len(specs) == 3
    first = specs[0]
    assert first["type"] == "function"
    assert first["function"]["name"] == "echo"
    assert first["function"]["parameters"] == {"type": "object"}

"""Catalog of the tools currently known from all connected tool servers."""

from typing import Any, Dict, Iterable, List, Optional

from ..models import ToolDescriptor
from ...exceptions import ToolNotFoundError, ToolRegistrationError
from ...logger import get_logger

logger = get_logger(__name__)


class ToolCatalog:
    """
    A central catalog of the tools offered by the configured tool servers.

    The catalog maps the name a model sees to the descriptor of the tool and its
    owning server. With ``namespaced=True`` tools are exposed as
    ``<server_id>.<tool>`` so equally named tools of different servers can coexist.
    """

    def __init__(self, namespaced: bool = False) -> None:
        """Initialize the ToolCatalog.

        Args:
            namespaced: Expose tools under their server-qualified name.
        """
        self.namespaced = namespaced
        self.tools: Dict[str, ToolDescriptor] = {}

    def exposed_name(self, descriptor: ToolDescriptor) -> str:
        return descriptor.qualified_name if self.namespaced else descriptor.name

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a single tool descriptor.

        Raises:
            ToolRegistrationError: If a tool with the same exposed name already exists.
        """
        name = self.exposed_name(descriptor)
        if name in self.tools:
            msg = f"Tool '{name}' is already registered (server '{self.tools[name].server_id}')."
            logger.error(msg)
            raise ToolRegistrationError(msg)

        self.tools[name] = descriptor
        logger.debug("Registered tool '%s' from server '%s'.", name, descriptor.server_id)

    def register_server_tools(self, server_id: str, descriptors: Iterable[ToolDescriptor]) -> int:
        """Replace every tool of a server with a freshly discovered set.

        Tools clashing with another server's tools are skipped.

        Returns:
            The number of tools registered.
        """
        self.unregister_server(server_id)
        registered = 0
        for descriptor in descriptors:
            if descriptor.server_id != server_id:
                descriptor = descriptor.model_copy(update={"server_id": server_id})
            try:
                self.register(descriptor)
                registered += 1
            except ToolRegistrationError as e:
                logger.warning("Skipping tool '%s' of server '%s': %s", descriptor.name, server_id, e)
        logger.info("Catalog holds %d tool(s) for server '%s'.", registered, server_id)
        return registered

    def unregister(self, tool_name: str) -> None:
        """Remove a tool from the catalog.

        Raises:
            ToolNotFoundError: If the tool does not exist in the catalog.
        """
        if tool_name not in self.tools:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in the catalog.")
        del self.tools[tool_name]

    def unregister_server(self, server_id: str) -> None:
        for name in [n for n, d in self.tools.items() if d.server_id == server_id]:
            del self.tools[name]

    def resolve(self, name: str) -> Optional[ToolDescriptor]:
        """Find the descriptor for a tool name emitted by a model.

        Exact matches on exposed names win; a server-qualified name is also accepted
        by a catalog that exposes plain names.

        Args:
            name: The tool name.

        Returns:
            The matching descriptor or None.
        """
        descriptor = self.tools.get(name)
        if descriptor is not None:
            return descriptor

        if "." in name:
            for candidate in self.tools.values():
                if candidate.qualified_name == name:
                    return candidate
        return None

    def server_ids(self) -> List[str]:
        return sorted({d.server_id for d in self.tools.values()})

    @property
    def tool_object(self) -> List[Dict[str, Any]]:
        """OpenAI-style function tool declarations for every catalogued tool."""
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": descriptor.description,
                    "parameters": descriptor.input_schema,
                },
            }
            for name, descriptor in self.tools.items()
        ]

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

"""
Address-space registrars following SOLID principles.
Separates the responsibility of mapping a node tree onto a server's address
space from the protocol server itself.
"""
from abc import ABC, abstractmethod
from typing import Any
import logging

from models import MTPNode, NodeClass
from models.parser import ROOT_NAME

logger = logging.getLogger("Registrars")


class ProtocolRegistrar(ABC):
    """Abstract base class for protocol registrars."""

    def __init__(self, root: MTPNode):
        self._root = root

    @abstractmethod
    async def register(self, server: Any) -> int:
        """Register the tree's nodes to the server. Returns the number of variables."""
        pass


class AddressSpaceRegistrar(ProtocolRegistrar):
    """
    Registers a node tree into an address space.

    The server must provide ``root_folder`` plus ``add_folder(parent, node)`` and
    ``add_variable(parent, node)`` coroutines. Nested 'MTP' folders are
    flattened into their parent, other named folders are created, objects
    contribute their children directly.
    """

    def __init__(self, root: MTPNode):
        super().__init__(root)
        self._count = 0

    async def register(self, server: Any) -> int:
        self._count = 0
        await self._add(self._root, server.root_folder, server)
        logger.info(f"Registered {self._count} variables to address space")
        return self._count

    async def _add(self, node: MTPNode, parent: Any, server: Any) -> None:
        if node.node_class == NodeClass.VARIABLE:
            if await server.add_variable(parent, node) is not None:
                self._count += 1
            return

        if node.node_class == NodeClass.FOLDER and node.browse_name == ROOT_NAME:
            # Skip nested MTP folders, process the children directly
            container = parent
        elif node.node_class == NodeClass.FOLDER and node.display_name:
            container = await server.add_folder(parent, node)
        else:
            container = parent

        for child in node.children:
            await self._add(child, container, server)

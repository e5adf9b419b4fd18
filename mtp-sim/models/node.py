import uuid
from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterator, List, Optional

from .identity import normalize
from .types import AccessMode, NodeClass


@dataclass(eq=False)
class MTPNode:
    """
    One node of the in-memory module tree (folder, object or variable leaf).

    Trees are built once per parse and replaced wholesale on reload; consumers
    traverse them but never change their shape.
    """
    display_name: str = ""
    browse_name: str = ""
    node_class: NodeClass = NodeClass.FOLDER
    data_type: Optional[str] = None
    node_id: Optional[str] = None  # raw identifier as found in the descriptor
    access: Optional[AccessMode] = None
    description: Optional[str] = None
    namespace: Optional[str] = None
    children: List["MTPNode"] = field(default_factory=list)

    @classmethod
    def folder(cls, display_name: str, browse_name: str = None) -> "MTPNode":
        return cls(display_name=display_name, browse_name=browse_name or display_name,
                   node_class=NodeClass.FOLDER)

    @classmethod
    def variable(cls, name: str, data_type: str = "Double", node_id: str = None,
                 **kwargs) -> "MTPNode":
        return cls(display_name=name, browse_name=name, node_class=NodeClass.VARIABLE,
                   data_type=data_type, node_id=node_id, **kwargs)

    @property
    def is_variable(self) -> bool:
        return self.node_class == NodeClass.VARIABLE

    @cached_property
    def key(self) -> str:
        """Canonical key of this node (stable for the lifetime of the instance)."""
        for candidate in (self.node_id, self.display_name, self.browse_name):
            if candidate and candidate.strip():
                return normalize(candidate)
        return normalize(uuid.uuid4().hex)


def walk(root: MTPNode) -> Iterator[MTPNode]:
    """Depth-first, pre-order traversal including the root."""
    yield root
    for child in root.children:
        yield from walk(child)


def variables(root: MTPNode) -> Iterator[MTPNode]:
    """All variable leaves below (and including) root."""
    return (node for node in walk(root) if node.is_variable)

"""
Abstract interfaces following Interface Segregation Principle (ISP) and
Dependency Inversion Principle (DIP).
"""
from abc import ABC, abstractmethod
from typing import Any, Optional
from dataclasses import dataclass


class ValueSink(ABC):
    """Interface for consumers of resolved value changes."""

    @abstractmethod
    def update_value(self, key: str, value: Any) -> None:
        """Receive the resolved value for a canonical key."""
        pass

    def value_written(self, key: str, value: Any) -> None:
        """Called after update_value when the change came from an external write."""
        pass

    def tree_loaded(self, variables: list) -> None:
        """Called with a VariableInfo snapshot after a new node tree was loaded."""
        pass


class ProtocolServer(ValueSink):
    """
    Abstract base class for protocol servers (SRP + OCP).
    New protocols can be added by extending this class without modifying existing code.
    """

    @abstractmethod
    def start(self) -> None:
        """Start the protocol server."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the protocol server."""
        pass

    @abstractmethod
    def load_nodes(self, root) -> None:
        """Replace the exposed address space with a new node tree."""
        pass

    @abstractmethod
    def get_value(self, key: str) -> Any:
        """Get a variable's current value."""
        pass


class SimulationLoop(ABC):
    """Interface for background value generators."""

    @abstractmethod
    def initialize(self, root) -> int:
        """Register the variables of a node tree. Returns the number registered."""
        pass

    @abstractmethod
    def start(self) -> None:
        """Start the simulation."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the simulation."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        pass


@dataclass
class VariableInfo:
    """Snapshot of one variable leaf for API consumers."""
    node_id: str  # canonical key
    display_name: str
    data_type: str
    value: Any = None
    access: Optional[int] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'nodeId': self.node_id,
            'displayName': self.display_name,
            'dataType': self.data_type,
            'value': self.value,
            'access': self.access,
            'description': self.description,
        }

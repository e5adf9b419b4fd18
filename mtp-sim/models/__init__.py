from .types import NodeClass, AccessMode
from .errors import (
    MTPError, DescriptorError, UnsupportedFormatError, MalformedDocumentError,
    StorePersistenceError
)
from .identity import normalize, qualify, split_key, DEFAULT_NAMESPACE
from .node import MTPNode, walk, variables
from .datatypes import canonical_type, is_numeric, default_value, coerce, parse_number
from .parser import MTPParser
from .parameters import SimulationConfig, ConfigManager
from .generators import next_sine, add_noise
from .store import ValueStore
from .fanout import ChangeFanout, CallbackSink
from .overrides import ValueResolver
from .engine import SimulationEngine

__all__ = [
    'NodeClass', 'AccessMode',
    'MTPError', 'DescriptorError', 'UnsupportedFormatError', 'MalformedDocumentError',
    'StorePersistenceError',
    'normalize', 'qualify', 'split_key', 'DEFAULT_NAMESPACE',
    'MTPNode', 'walk', 'variables',
    'canonical_type', 'is_numeric', 'default_value', 'coerce', 'parse_number',
    'MTPParser',
    'SimulationConfig', 'ConfigManager',
    'next_sine', 'add_noise',
    'ValueStore',
    'ChangeFanout', 'CallbackSink',
    'ValueResolver',
    'SimulationEngine'
]

import logging
from typing import Any, Optional

from .datatypes import parse_number
from .errors import StorePersistenceError
from .fanout import ChangeFanout
from .identity import normalize
from .store import ValueStore

# Configure logging
logger = logging.getLogger("ValueResolver")


class ValueResolver:
    """
    Decides, per tag, whether the generated or the externally written value
    is authoritative, and publishes the result.

    - Generated sample for K: a stored override for K whose text is a finite
      number wins; otherwise the generated value is published.
    - External write of V to K: always persisted and always published.

    Overrides are never cleared here; once written they win until replaced.
    """

    def __init__(self, store: ValueStore, fanout: ChangeFanout):
        self._store = store
        self._fanout = fanout

    @property
    def store(self) -> ValueStore:
        return self._store

    def override_for(self, key: str) -> Optional[float]:
        """Numeric override stored for key, or None."""
        found, text = self._store.try_get(key)
        if not found:
            return None
        return parse_number(text)

    def on_generated(self, key: str, value: float) -> Any:
        """Resolve and publish one generated sample. Returns the published value."""
        try:
            override = self.override_for(key)
        except StorePersistenceError as e:
            logger.warning(f"Override lookup failed for {key}, using generated value: {e}")
            override = None

        resolved = value if override is None else override
        self._fanout.notify(key, resolved)
        return resolved

    def write(self, raw_identifier: str, value: Any) -> str:
        """
        Apply an external write. Returns the canonical key written.

        Raises:
            StorePersistenceError: if the override could not be persisted
                (nothing is published in that case).
        """
        key = normalize(raw_identifier)
        self._store.upsert(key, value)
        logger.info(f"External write: {key} = {value!r}")
        self._fanout.notify(key, value, external=True)
        return key

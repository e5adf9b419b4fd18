"""
MTP Simulator Main Entry Point

Loads an MTP/AutomationML descriptor, generates live values for its numeric
tags and publishes them over OPC UA and a web API.

Follows SOLID principles:
- SRP: parsing, generation, override resolution and publishing are separate
- OCP: new sinks subscribe to the fan-out without changes here
- DIP: the orchestrator depends on ProtocolServer / SimulationLoop abstractions
"""
__version__ = "0.1.0"

import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

from models import (
    MTPNode, MTPParser, SimulationEngine, SimulationConfig, ConfigManager,
    ValueStore, ValueResolver, ChangeFanout, CallbackSink, variables, canonical_type,
    DescriptorError
)
from interfaces import ProtocolServer, VariableInfo, ValueSink
from servers import OPCUAServer, DEFAULT_ENDPOINT
from web.app import WebServer, BroadcastSink

logger = logging.getLogger("Main")


class MTPSimulator:
    """
    Orchestrates the simulator (SRP - only coordinates components).
    Wiring: engine -> resolver -> fan-out -> protocol servers and other sinks.
    """

    def __init__(self,
                 store: ValueStore,
                 config: SimulationConfig = None,
                 servers: List[ProtocolServer] = None,
                 parser: MTPParser = None,
                 engine: SimulationEngine = None,
                 config_path: Optional[str] = None):
        self._config = config or SimulationConfig()
        self._config_path = config_path
        self._parser = parser or MTPParser()
        self._engine = engine or SimulationEngine(self._config)
        self._fanout = ChangeFanout()
        self._resolver = ValueResolver(store, self._fanout)
        self._servers: List[ProtocolServer] = list(servers or [])

        self._root: Optional[MTPNode] = None
        self._source: Optional[str] = None
        self._tree_lock = threading.Lock()
        self._latest: Dict[str, Any] = {}

        self._engine.subscribe(self._resolver.on_generated)
        self._fanout.subscribe(CallbackSink(self._record))
        for server in self._servers:
            self._fanout.subscribe(server)

    # === Accessors ===

    @property
    def root(self) -> Optional[MTPNode]:
        return self._root

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def engine(self) -> SimulationEngine:
        return self._engine

    @property
    def fanout(self) -> ChangeFanout:
        return self._fanout

    @property
    def store(self) -> ValueStore:
        return self._resolver.store

    def subscribe(self, sink: ValueSink) -> ValueSink:
        """Attach an additional value sink."""
        return self._fanout.subscribe(sink)

    def _record(self, key: str, value: Any) -> None:
        self._latest[key] = value

    # === Loading ===

    def load_file(self, path: str, source: str = None) -> MTPNode:
        """
        Parse a descriptor file and make it the active tree.

        Raises:
            DescriptorError: the file could not be parsed; the previous tree stays active.
        """
        root = self._parser.parse_file(path)
        self._activate(root, source or os.path.basename(path))
        return root

    def load_string(self, xml: str, source: str = "<string>") -> MTPNode:
        """Parse a descriptor document given as text and make it the active tree."""
        root = self._parser.parse(xml)
        self._activate(root, source)
        return root

    def _activate(self, root: MTPNode, source: str) -> None:
        with self._tree_lock:
            self._root = root
            self._source = source
            self._latest = {}
            count = self._engine.initialize(root)
            for server in self._servers:
                try:
                    server.load_nodes(root)
                except Exception:
                    logger.exception(f"{type(server).__name__} failed to load the new tree")
        logger.info(f"Loaded MTP '{source}': {len(list(variables(root)))} variables, "
                    f"{count} simulated")
        self._fanout.notify_loaded(self.variables())

    # === Values ===

    def write(self, raw_identifier: str, value: Any) -> str:
        """Apply an external write (persisted override). Returns the canonical key."""
        return self._resolver.write(raw_identifier, value)

    def variables(self) -> List[VariableInfo]:
        """Snapshot of every variable leaf with its latest resolved value."""
        root = self._root
        if root is None:
            return []
        latest = self._latest
        return [
            VariableInfo(
                node_id=node.key,
                display_name=node.display_name,
                data_type=canonical_type(node.data_type),
                value=latest.get(node.key),
                access=int(node.access) if node.access is not None else None,
                description=node.description,
            )
            for node in variables(root)
        ]

    def overrides(self) -> Dict[str, Dict[str, str]]:
        """Every persisted override."""
        return self._resolver.store.all()

    def status(self) -> Dict[str, Any]:
        """Summary for the status endpoint."""
        root = self._root
        return {
            'version': __version__,
            'loaded': root is not None,
            'source': self._source,
            'variables': len(list(variables(root))) if root is not None else 0,
            'simulated': len(self._engine.registered_keys),
            'running': self._engine.is_running,
            'config': self._config.to_dict(),
        }

    def update_config(self, values: Dict[str, Any]) -> Dict[str, bool]:
        """Apply settings (live) and save them when a config path is set."""
        results = self._config.update(values)
        if self._config_path:
            ConfigManager.save(self._config, self._config_path)
        return results

    # === Lifecycle ===

    def start(self) -> None:
        """Start the simulation loop."""
        self._engine.start()

    def stop(self) -> None:
        """Stop the simulation loop."""
        self._engine.stop()


def env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


def run() -> None:
    """Application entry point."""
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=logging.INFO
    )

    config_path = os.environ.get("SIM_CONFIG", "simconfig.json")
    config = ConfigManager.load_or_default(config_path)
    store = ValueStore(os.environ.get("VALUE_DB", "mtp_values.db"))

    # Create components (DIP - dependencies are injected)
    servers: List[ProtocolServer] = []
    opcua = None
    if env_flag("ENABLE_OPCUA"):
        opcua = OPCUAServer(os.environ.get("OPCUA_ENDPOINT", DEFAULT_ENDPOINT))
        servers.append(opcua)

    simulator = MTPSimulator(store, config=config, servers=servers, config_path=config_path)
    broadcaster = simulator.subscribe(BroadcastSink())
    if opcua is not None:
        opcua.set_write_callback(simulator.write)

    web = WebServer(simulator,
                    host=os.environ.get("WEB_HOST", "0.0.0.0"),
                    port=int(os.environ.get("WEB_PORT", "5288")),
                    broadcaster=broadcaster)

    logger.info(f"Starting MTP Simulator v{__version__}...")
    try:
        for server in servers:
            server.start()
        web.start()

        mtp_file = os.environ.get("MTP_FILE")
        if mtp_file:
            try:
                simulator.load_file(mtp_file)
            except DescriptorError as e:
                logger.error(f"Failed to load startup MTP '{mtp_file}': {e}")

        simulator.start()
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info("Stopping MTP Simulator...")
        simulator.stop()
        web.stop()
        for server in servers:
            server.stop()
        store.close()
        logger.info("MTP Simulator stopped")


if __name__ == "__main__":
    run()

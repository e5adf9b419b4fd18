"""
Protocol server implementations following SOLID principles.
Each server class has a Single Responsibility and implements the ProtocolServer interface.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from asyncua import Server, ua
from asyncua.common.callback import CallbackType
from asyncua.ua.uaerrors import UaStringParsingError

from interfaces import ProtocolServer
from models import MTPNode, AccessMode, canonical_type, coerce, default_value
from registrars import AddressSpaceRegistrar

logger = logging.getLogger("OPCUAServer")

# Reduce asyncua logging noise
logging.getLogger("asyncua").setLevel(logging.WARNING)

NAMESPACE_URI = "urn:mtp-simulator:nodes"
DEFAULT_ENDPOINT = "opc.tcp://0.0.0.0:4840/mtp-simulator/"

WriteCallback = Callable[[str, Any], Any]


def normalize_endpoint(endpoint: str) -> str:
    """Accept 'host:port' forms as well as full opc.tcp:// URLs."""
    trimmed = endpoint.strip()
    if trimmed.lower().startswith("opc.tcp://"):
        return trimmed
    return f"opc.tcp://{trimmed}"


class OPCUAServer(ProtocolServer):
    """
    OPC UA server exposing the node tree under an 'MTP' folder (SRP - only
    handles the OPC UA address space).

    The asyncua server runs on its own event loop in a background thread;
    public methods are safe to call from any thread. Client writes are handed
    to ``write_callback(node_id, value)``.
    """

    START_TIMEOUT = 30.0
    CALL_TIMEOUT = 10.0

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT,
                 server_name: str = "MTP OPC UA Simulator",
                 write_callback: Optional[WriteCallback] = None):
        self._endpoint = normalize_endpoint(endpoint)
        self._server_name = server_name
        self._write_callback = write_callback
        self._root: Optional[MTPNode] = None
        self._server: Optional[Server] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._folder = None
        self._ns_idx = 2
        self._variables: Dict[str, Tuple[Any, str]] = {}  # key -> (ua node, data type)
        self._keys_by_nodeid: Dict[str, str] = {}  # ua node id string -> key

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def root_folder(self):
        return self._folder

    @property
    def variable_count(self) -> int:
        return len(self._variables)

    def set_write_callback(self, callback: WriteCallback) -> None:
        """Set the callback for client write operations."""
        self._write_callback = callback

    # === Lifecycle ===

    def start(self) -> None:
        """Start the OPC UA server in a background thread."""
        if self._server is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="opcua-server", daemon=True)
        self._thread.start()
        try:
            self._call(self._serve(), timeout=self.START_TIMEOUT)
        except Exception:
            logger.exception(f"OPC UA server failed to start on {self._endpoint}")
            self._shutdown_loop()
            raise
        logger.info(f"OPC UA Server started on {self._endpoint}")

    def _run_loop(self) -> None:
        """Run the server's event loop (blocking)."""
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    async def _serve(self) -> None:
        server = Server()
        await server.init()
        server.set_endpoint(self._endpoint)
        server.set_server_name(self._server_name)
        self._ns_idx = await server.register_namespace(NAMESPACE_URI)
        self._folder = await server.nodes.objects.add_folder(
            ua.NodeId("MTP", self._ns_idx), ua.QualifiedName("MTP", self._ns_idx))
        server.subscribe_server_callback(CallbackType.PostWrite, self._on_post_write)
        self._server = server
        await self._populate()
        await server.start()

    def stop(self) -> None:
        """Stop the OPC UA server."""
        if self._server is not None:
            try:
                self._call(self._server.stop())
            except Exception:
                logger.exception("Error while stopping OPC UA server")
            self._server = None
        self._shutdown_loop()
        logger.info("OPC UA server stopped")

    def _shutdown_loop(self) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=self.CALL_TIMEOUT)
        if not self._loop.is_running():
            self._loop.close()
        self._loop = None
        self._thread = None
        self._server = None
        self._folder = None
        self._variables = {}
        self._keys_by_nodeid = {}

    def _call(self, coro, timeout: float = CALL_TIMEOUT):
        """Run a coroutine on the server loop and wait for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    # === Address space ===

    def load_nodes(self, root: MTPNode) -> None:
        """Replace the MTP folder contents with a new tree (rebuilds if running)."""
        self._root = root
        if self._server is not None:
            self._call(self._rebuild())

    async def _rebuild(self) -> None:
        children = await self._folder.get_children()
        if children:
            await self._server.delete_nodes(children, recursive=True)
        self._variables = {}
        self._keys_by_nodeid = {}
        await self._populate()

    async def _populate(self) -> None:
        if self._root is None:
            # Placeholder so clients can see the folder is working
            status = await self._folder.add_variable(
                ua.NodeId("MTP_Status", self._ns_idx),
                ua.QualifiedName("Status", self._ns_idx),
                "No MTP loaded", varianttype=ua.VariantType.String)
            logger.info("No MTP loaded, added placeholder status variable")
            return status
        return await AddressSpaceRegistrar(self._root).register(self)

    def _make_nodeid(self, key: str) -> ua.NodeId:
        try:
            return ua.NodeId.from_string(key)
        except (UaStringParsingError, ValueError):
            return ua.NodeId(key, self._ns_idx)

    async def add_folder(self, parent, node: MTPNode):
        """Create a folder for a tree folder node."""
        path = node.browse_name or node.display_name
        return await parent.add_folder(ua.NodeId(path, self._ns_idx),
                                       ua.QualifiedName(path, self._ns_idx))

    async def add_variable(self, parent, node: MTPNode):
        """Create a variable for a leaf. Returns None for duplicate keys."""
        key = node.key
        if key in self._variables:
            logger.warning(f"Skipping duplicate variable '{node.display_name}' ({key})")
            return None

        data_type = canonical_type(node.data_type)
        browse_name = node.browse_name or node.display_name or "Var"
        var = await parent.add_variable(
            self._make_nodeid(key),
            ua.QualifiedName(browse_name, self._ns_idx),
            default_value(data_type),
            varianttype=getattr(ua.VariantType, data_type))
        if node.access != AccessMode.READ:
            await var.set_writable()

        self._variables[key] = (var, data_type)
        self._keys_by_nodeid[var.nodeid.to_string()] = key
        logger.debug(f"Added variable '{node.display_name}' as {key} ({data_type})")
        return var

    # === Values ===

    def update_value(self, key: str, value: Any) -> None:
        """Push a resolved value into the address space (non-blocking)."""
        entry = self._variables.get(key)
        loop = self._loop
        if entry is None or loop is None or self._server is None:
            logger.debug(f"Update for unknown or inactive variable {key} ignored")
            return
        asyncio.run_coroutine_threadsafe(self._write_value(key, entry, value), loop)

    async def _write_value(self, key: str, entry: Tuple[Any, str], value: Any) -> None:
        var, data_type = entry
        try:
            converted = coerce(value, data_type)
            datavalue = ua.DataValue(ua.Variant(converted, getattr(ua.VariantType, data_type)))
            await self._server.write_attribute_value(var.nodeid, datavalue)
        except Exception:
            logger.exception(f"Failed to update {key} with {value!r}")

    def get_value(self, key: str) -> Any:
        """Read a variable's current value from the address space."""
        entry = self._variables.get(key)
        if entry is None or self._loop is None:
            return None
        return self._call(entry[0].read_value())

    async def _on_post_write(self, event, dispatcher) -> None:
        """Forward successful client writes of variable values."""
        if self._write_callback is None:
            return
        for write_value, status in zip(event.request_params.NodesToWrite, event.response_params):
            if write_value.AttributeId != ua.AttributeIds.Value or not status.is_good():
                continue
            node_id = write_value.NodeId.to_string()
            key = self._keys_by_nodeid.get(node_id)
            if key is None:
                # Server-internal nodes (ServerStatus etc.) are not tags
                continue
            value = write_value.Value.Value.Value
            try:
                self._write_callback(key, value)
            except Exception:
                logger.exception(f"External write of {key} was not accepted")

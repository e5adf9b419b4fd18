import time
import threading
import logging
import random
from typing import Callable, Dict, List, Optional

from interfaces import SimulationLoop
from .datatypes import is_numeric
from .generators import next_sine, add_noise
from .node import MTPNode, variables
from .parameters import SimulationConfig

logger = logging.getLogger("SimulationEngine")

ValueListener = Callable[[str, float], None]


class SimulationEngine(SimulationLoop):
    """
    Background generator of synthetic values for every numeric variable leaf
    (SRP - produces samples only; merging with overrides happens downstream).

    States: idle -> running -> idle. Each run owns its own stop event, so a
    loop that outlives its join timeout exits at its next wait and never ticks
    next to a newer run.
    """

    AMPLITUDE = 50.0
    PERIOD_SECONDS = 30.0

    def __init__(self, config: SimulationConfig = None, rng: random.Random = None):
        self._config = config or SimulationConfig()
        self._rng = rng or random.Random()
        self._values: Dict[str, float] = {}
        self._values_lock = threading.Lock()
        self._listeners: List[ValueListener] = []
        self._listeners_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    @property
    def registered_keys(self) -> List[str]:
        with self._values_lock:
            return list(self._values)

    def values(self) -> Dict[str, float]:
        """Snapshot of the last generated value per key."""
        with self._values_lock:
            return dict(self._values)

    def subscribe(self, listener: ValueListener) -> None:
        """Register a (key, value) listener called for every generated sample."""
        with self._listeners_lock:
            self._listeners = self._listeners + [listener]

    def unsubscribe(self, listener: ValueListener) -> None:
        with self._listeners_lock:
            self._listeners = [l for l in self._listeners if l is not listener]

    def initialize(self, root: MTPNode) -> int:
        """
        Register every numeric variable leaf of the tree, keyed by its canonical key,
        with an initial value of 0.0. Replaces any previous registration set.
        """
        registered = {}
        for node in variables(root):
            if is_numeric(node.data_type):
                registered[node.key] = 0.0
        with self._values_lock:
            self._values = registered
        logger.info(f"Registered {len(registered)} numeric variables for simulation")
        return len(registered)

    def start(self) -> None:
        """Start ticking. Restarts cleanly if already running."""
        with self._state_lock:
            self._stop_locked()
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(target=self._tick_loop, args=(stop_event,),
                                            name="simulation-engine", daemon=True)
            self._thread.start()
        logger.info(f"Simulation Engine Started (interval {self._config.update_interval_ms} ms)")

    def stop(self) -> None:
        """Request cancellation and wait (bounded) for the loop to exit."""
        with self._state_lock:
            was_running = self._stop_locked()
        if was_running:
            logger.info("Simulation Engine Stopped")

    def _stop_locked(self) -> bool:
        if self._stop_event is None:
            return False
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout())
            if thread.is_alive():
                logger.warning("Simulation loop did not exit within timeout; continuing shutdown")
        self._stop_event = None
        self._thread = None
        return True

    def _join_timeout(self) -> float:
        return max(1.0, self._config.update_interval_s)

    def tick(self, t: float) -> None:
        """Generate and emit one sample for every registered key at elapsed time t."""
        with self._values_lock:
            keys = list(self._values)
        with self._listeners_lock:
            listeners = self._listeners

        for key in keys:
            try:
                value = next_sine(t, self.AMPLITUDE, self.PERIOD_SECONDS)
                value = add_noise(value, self._config.noise_amplitude, self._rng)
                with self._values_lock:
                    if key not in self._values:
                        # Unregistered by a reload during this tick
                        continue
                    self._values[key] = value
                for listener in listeners:
                    listener(key, value)
            except Exception:
                logger.exception(f"Tick failed for {key}")

    def _tick_loop(self, stop_event: threading.Event) -> None:
        """Main loop: tick, then wait one interval (cancellable mid-wait)."""
        start = time.monotonic()
        while not stop_event.is_set():
            self.tick(time.monotonic() - start)
            stop_event.wait(self._config.update_interval_s)

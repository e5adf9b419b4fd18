import threading
import time

import pytest

from interfaces import ProtocolServer
from main import MTPSimulator
from models import SimulationConfig, MalformedDocumentError, UnsupportedFormatError

DOC = """
<CAEXFile>
  <Variable Name="Temp" DataType="Double"/>
  <ExternalInterface Name="PV" RefBaseClassPath="Lib/OPCUAItem">
    <Attribute Name="Identifier"><Value>R0001</Value></Attribute>
    <Attribute Name="DataType"><Value>xs:double</Value></Attribute>
    <Attribute Name="Access"><Value>3</Value></Attribute>
  </ExternalInterface>
  <Variable Name="Mode" DataType="xs:string"/>
</CAEXFile>
"""


class FakeServer(ProtocolServer):
    def __init__(self, fail_load=False):
        self.loaded = []
        self.values = []
        self.fail_load = fail_load

    def start(self):
        pass

    def stop(self):
        pass

    def load_nodes(self, root):
        if self.fail_load:
            raise RuntimeError("address space unavailable")
        self.loaded.append(root)

    def get_value(self, key):
        return None

    def update_value(self, key, value):
        self.values.append((key, value))


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def simulator(store, server):
    sim = MTPSimulator(store, config=SimulationConfig(update_interval_ms=50.0, noise_amplitude=0.0),
                       servers=[server])
    yield sim
    sim.stop()


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_load_string_initializes_engine_and_servers(simulator, server):
    root = simulator.load_string(DOC)
    assert simulator.root is root
    assert server.loaded == [root]
    assert sorted(simulator.engine.registered_keys) == ["ns=2;s=R0001", "ns=2;s=Temp"]
    infos = simulator.variables()
    assert [i.node_id for i in infos] == ["ns=2;s=Temp", "ns=2;s=Mode", "ns=2;s=R0001"]
    pv = infos[2]
    assert pv.access == 3
    assert pv.data_type == "Double"


def test_failed_load_keeps_previous_tree(simulator, tmp_path):
    root = simulator.load_string(DOC)
    with pytest.raises(MalformedDocumentError):
        simulator.load_string("<broken")
    bad = tmp_path / "module.json"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(UnsupportedFormatError):
        simulator.load_file(str(bad))
    assert simulator.root is root
    assert len(simulator.engine.registered_keys) == 2


def test_server_load_failure_does_not_fail_load(store):
    sim = MTPSimulator(store, servers=[FakeServer(fail_load=True)])
    sim.load_string(DOC)
    assert sim.root is not None


def test_override_wins_on_next_tick(simulator, server):
    simulator.load_string(DOC)
    simulator.start()
    assert wait_for(lambda: any(k == "ns=2;s=R0001" for k, _ in server.values))

    key = simulator.write("NS2|String|R0001", "42")
    assert key == "ns=2;s=R0001"
    server.values.clear()
    assert wait_for(lambda: (key, 42.0) in server.values)
    simulator.stop()

    latest = {i.node_id: i.value for i in simulator.variables()}
    assert latest[key] == 42.0


def test_write_publishes_to_servers_before_any_tick(simulator, server):
    simulator.load_string(DOC)
    simulator.write("ns=2;s=Mode", "auto")
    assert server.values == [("ns=2;s=Mode", "auto")]


def test_status(simulator):
    assert simulator.status()["loaded"] is False
    simulator.load_string(DOC, source="inline.aml")
    status = simulator.status()
    assert status["loaded"] is True
    assert status["source"] == "inline.aml"
    assert status["variables"] == 3
    assert status["simulated"] == 2
    assert status["config"]["updateIntervalMs"] == 50.0


def test_load_file_archive(simulator, make_archive):
    path = make_archive({"one.aml": DOC, "two.xml": '<Doc><Variable Name="Extra"/></Doc>'})
    root = simulator.load_file(path)
    assert root.display_name == "module.mtp"
    assert simulator.status()["source"] == "module.mtp"
    assert len(simulator.variables()) == 4


def test_load_notifies_sinks_with_snapshot(simulator, sink):
    simulator.subscribe(sink)
    simulator.load_string(DOC)
    (snapshot,) = sink.loaded
    assert [info.node_id for info in snapshot] == ["ns=2;s=Temp", "ns=2;s=Mode", "ns=2;s=R0001"]


def test_concurrent_writes_during_ticks(simulator, store, sink):
    simulator.subscribe(sink)
    simulator.load_string(DOC)
    simulator.start()

    writers, rounds = 8, 40
    shared = "ns=2;s=Shared"
    errors = []

    def writer(n):
        try:
            for i in range(rounds):
                simulator.write(f"W{n}", str(i))
                simulator.write(shared, f"{n}:{i}")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(writers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    simulator.stop()

    assert errors == []
    rows = store.all()
    for n in range(writers):
        assert rows[f"ns=2;s=W{n}"]["value"] == str(rounds - 1)
        own = [v for k, v in sink.writes if k == f"ns=2;s=W{n}"]
        assert own == [str(i) for i in range(rounds)]
    written = {f"{n}:{i}" for n in range(writers) for i in range(rounds)}
    assert rows[shared]["value"] in written
    assert len(sink.writes) == 2 * writers * rounds
    assert any(k == "ns=2;s=Temp" for k, _ in sink.values)

    simulator.write("Shared", "final")
    assert store.try_get(shared) == (True, "final")

import threading
import zipfile

import pytest

from interfaces import ValueSink
from models import ValueStore


SAMPLE_XML = """<?xml version="1.0" encoding="utf-8"?>
<CAEXFile xmlns="http://www.dke.de/CAEX" FileName="Module.aml">
  <InstanceHierarchy Name="ModuleTypePackage">
    <InternalElement Name="Reactor">
      <Variable Name="Temp" DataType="Double" />
      <Variable Name="Level" DataType="Int32" NamespaceIndex="3" NodeId="L100" />
      <ExternalInterface Name="PV" RefBaseClassPath="MTPCommunicationSUCLib/OPCUAItem">
        <Attribute Name="Identifier" AttributeDataType="xs:double">
          <Value>R0001</Value>
        </Attribute>
        <Attribute Name="Namespace">
          <Value>urn:vendor:plc</Value>
        </Attribute>
        <Attribute Name="Access">
          <Value>1</Value>
        </Attribute>
        <Attribute Name="Description">
          <Value>Reactor pressure</Value>
        </Attribute>
      </ExternalInterface>
      <Attribute Name="Set Point" AttributeDataType="xs:float">
        <Value>12.5</Value>
      </Attribute>
      <Attribute Name="Tag">
        <Value>R0001</Value>
      </Attribute>
    </InternalElement>
  </InstanceHierarchy>
</CAEXFile>
"""


class RecordingSink(ValueSink):
    """Collects every delivered change."""

    def __init__(self):
        self.values = []
        self.writes = []
        self.loaded = []
        self._lock = threading.Lock()

    def update_value(self, key, value):
        with self._lock:
            self.values.append((key, value))

    def value_written(self, key, value):
        with self._lock:
            self.writes.append((key, value))

    def tree_loaded(self, variables):
        with self._lock:
            self.loaded.append(variables)

    def keys(self):
        with self._lock:
            return [k for k, _ in self.values]


@pytest.fixture
def sample_xml():
    return SAMPLE_XML


@pytest.fixture
def make_archive(tmp_path):
    """Build an archive file from {entry name: text} and return its path."""

    def build(entries, name="module.mtp"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as archive:
            for entry, text in entries.items():
                archive.writestr(entry, text)
        return str(path)

    return build


@pytest.fixture
def store():
    s = ValueStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def sink():
    return RecordingSink()

import zipfile

import pytest

from models import (
    MTPParser, NodeClass, AccessMode, DescriptorError, UnsupportedFormatError,
    MalformedDocumentError,
    normalize, variables
)


def leaves(root):
    return list(variables(root))


def test_generic_variable_defaults():
    root = MTPParser().parse('<Doc><Variable Name="Temp" DataType="Double"/></Doc>')
    (leaf,) = leaves(root)
    assert leaf.node_id == "ns=2;s=Temp"
    assert leaf.data_type == "Double"
    assert leaf.node_class == NodeClass.VARIABLE
    assert root.display_name == "MTP"
    assert root.node_class == NodeClass.FOLDER


def test_generic_variable_namespace_and_node_id():
    root = MTPParser().parse(
        '<Doc><Variable Name="Level" DataType="Int32" NamespaceIndex="3" NodeId="L100"/>'
        '<Variable/></Doc>')
    level, unknown = leaves(root)
    assert level.node_id == "ns=3;s=L100"
    assert unknown.display_name == "Unknown"
    assert unknown.node_id == "ns=2;s=Unknown"
    assert unknown.data_type == "Double"


def test_sample_document_strategies_in_order(sample_xml):
    root = MTPParser().parse(sample_xml)
    names = [n.display_name for n in root.children]
    assert names == ["Temp", "Level", "PV", "Set Point", "Tag"]


def test_ua_item_fields(sample_xml):
    root = MTPParser().parse(sample_xml)
    pv = next(n for n in leaves(root) if n.display_name == "PV")
    assert pv.node_id == "R0001"
    assert pv.key == "ns=2;s=R0001"
    assert pv.data_type == "xs:double"
    assert pv.access == AccessMode.READ
    assert pv.description == "Reactor pressure"
    assert pv.namespace == "urn:vendor:plc"


def test_ua_item_children_not_picked_up_by_fallback(sample_xml):
    root = MTPParser().parse(sample_xml)
    names = {n.display_name for n in leaves(root)}
    assert "Identifier" not in names
    assert "Access" not in names


def test_attribute_fallback_identifier_and_type(sample_xml):
    root = MTPParser().parse(sample_xml)
    by_name = {n.display_name: n for n in leaves(root)}
    assert by_name["Set Point"].node_id == "ns=2;s=AML/Set_Point"
    assert by_name["Set Point"].data_type == "xs:float"
    assert by_name["Tag"].data_type == "Double"


def test_ua_item_and_duplicate_attribute_give_two_leaves():
    xml = """
    <CAEXFile>
      <ExternalInterface Name="R0001" RefBaseClassPath="Lib/OPCUAItem">
        <Attribute Name="Identifier"><Value>R0001</Value></Attribute>
      </ExternalInterface>
      <Attribute Name="R0001" AttributeDataType="xs:double" />
    </CAEXFile>
    """
    root = MTPParser().parse(xml)
    found = leaves(root)
    assert len(found) == 2
    assert [n.display_name for n in found] == ["R0001", "R0001"]
    assert found[0].key == normalize("NS2|String|R0001")


def test_ua_item_blank_identifier_uses_interface_name():
    xml = """
    <CAEXFile>
      <ExternalInterface Name="Valve" RefBaseClassPath="x/opcuaitem">
        <Attribute Name="identifier"><Value>  </Value></Attribute>
        <Attribute Name="ACCESS"><Value>rw</Value></Attribute>
        <Attribute Name="DataType"><Value>Boolean</Value></Attribute>
      </ExternalInterface>
    </CAEXFile>
    """
    (leaf,) = leaves(MTPParser().parse(xml))
    assert leaf.node_id == "Valve"
    assert leaf.access is None
    assert leaf.data_type == "Boolean"


def test_ua_item_without_attributes_defaults_to_string():
    xml = '<CAEXFile><ExternalInterface RefBaseClassPath="OPCUAItem"/></CAEXFile>'
    (leaf,) = leaves(MTPParser().parse(xml))
    assert leaf.display_name == "Item"
    assert leaf.data_type == "xs:string"


def test_malformed_document():
    with pytest.raises(MalformedDocumentError):
        MTPParser().parse("<Doc><Variable Name='x'></Doc>")


def test_unsupported_extension_fails_before_io(tmp_path):
    missing = tmp_path / "does-not-exist.txt"
    with pytest.raises(UnsupportedFormatError) as excinfo:
        MTPParser().parse_file(str(missing))
    assert excinfo.value.extension == ".txt"


def test_parse_document_file(tmp_path, sample_xml):
    path = tmp_path / "Module.AML"
    path.write_text(sample_xml, encoding="utf-8")
    root = MTPParser().parse_file(str(path))
    assert len(leaves(root)) == 5


def test_archive_union_is_flattened(make_archive):
    path = make_archive({
        "a/first.aml": '<Doc><Variable Name="A"/></Doc>',
        "second.xml": '<Doc><Variable Name="B"/><Variable Name="C"/></Doc>',
        "readme.txt": "not a descriptor",
    })
    root = MTPParser().parse_file(path)
    assert root.display_name == "module.mtp"
    assert root.browse_name == "MTP"
    assert [n.display_name for n in root.children] == ["A", "B", "C"]
    assert all(n.node_class == NodeClass.VARIABLE for n in root.children)


def test_bad_archive_entry_aborts_whole_archive(make_archive):
    # All-or-nothing: one malformed entry fails the archive, valid entries included
    path = make_archive({
        "good.aml": '<Doc><Variable Name="A"/></Doc>',
        "broken.aml": "<Doc><Variable",
    }, name="module.amlx")
    with pytest.raises(MalformedDocumentError) as excinfo:
        MTPParser().parse_file(path)
    assert excinfo.value.entry == "broken.aml"


def test_not_a_zip(tmp_path):
    path = tmp_path / "fake.mtp"
    path.write_bytes(b"plain text")
    with pytest.raises(MalformedDocumentError):
        MTPParser().parse_file(str(path))


def _archive_with_patched_entry(path, entry, **fields):
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("good.aml", '<Doc><Variable Name="A"/></Doc>')
        archive.writestr(entry, '<Doc><Variable Name="B"/></Doc>')
        info = archive.getinfo(entry)
        for name, value in fields.items():
            setattr(info, name, value)
    return str(path)


def test_encrypted_archive_entry_is_malformed(tmp_path):
    path = _archive_with_patched_entry(tmp_path / "locked.mtp", "locked.aml", flag_bits=0x1)
    with pytest.raises(DescriptorError) as excinfo:
        MTPParser().parse_file(path)
    assert isinstance(excinfo.value, MalformedDocumentError)
    assert excinfo.value.entry == "locked.aml"


def test_unsupported_compression_entry_is_malformed(tmp_path):
    path = _archive_with_patched_entry(tmp_path / "odd.amlx", "odd.xml", compress_type=99)
    with pytest.raises(MalformedDocumentError) as excinfo:
        MTPParser().parse_file(path)
    assert excinfo.value.entry == "odd.xml"


def test_explicit_empty_attributes_are_kept():
    root = MTPParser().parse('<Doc><Variable Name="" NodeId="" NamespaceIndex="4"/></Doc>')
    (leaf,) = leaves(root)
    assert leaf.display_name == ""
    assert leaf.node_id == "ns=4;s="


def test_missing_node_id_falls_back_to_name():
    root = MTPParser().parse('<Doc><Variable Name="Flow"/></Doc>')
    assert leaves(root)[0].node_id == "ns=2;s=Flow"

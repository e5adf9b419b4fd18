"""
Descriptor parser: AutomationML-derived module descriptors to an MTPNode tree.

Three extraction strategies run over every document and append their leaves
to the root in this order:

1. generic ``Variable`` elements
2. ``ExternalInterface`` elements referencing an OPC UA item class
3. every other ``Attribute`` element (AutomationML attribute fallback)

The strategies are additive. The same tag may appear more than once in the
resulting tree; consumers reconcile duplicates through the canonical key.
"""
import logging
import os
import zipfile
from typing import Optional, Union

from lxml import etree

from .errors import MalformedDocumentError, UnsupportedFormatError
from .identity import DEFAULT_NAMESPACE, qualify
from .node import MTPNode
from .types import AccessMode

logger = logging.getLogger("MTPParser")

ARCHIVE_EXTENSIONS = ('.mtp', '.amlx')
DOCUMENT_EXTENSIONS = ('.aml', '.xml')

UA_ITEM_MARKER = "opcuaitem"
ROOT_NAME = "MTP"


def _local_name(element) -> str:
    return etree.QName(element).localname


def _children_named(element, local_name: str):
    return [child for child in element.iterchildren(etree.Element)
            if _local_name(child) == local_name]


def _value_text(attribute) -> Optional[str]:
    """Text of the attribute's <Value> child, if any."""
    for child in _children_named(attribute, "Value"):
        return child.text or ""
    return None


def _declared_type(attribute) -> Optional[str]:
    return attribute.get("AttributeDataType") or attribute.get("DataType")


def _is_ua_item(element) -> bool:
    if _local_name(element) != "ExternalInterface":
        return False
    return UA_ITEM_MARKER in (element.get("RefBaseClassPath") or "").lower()


def _parse_access(text: str) -> Optional[AccessMode]:
    try:
        return AccessMode(int(text.strip()))
    except ValueError:
        return None


class MTPParser:
    """Parses module descriptors (single documents or archives) into node trees."""

    def __init__(self):
        self._xml_parser = etree.XMLParser(resolve_entities=False, no_network=True,
                                           remove_comments=True)
        self._text_parser = etree.XMLParser(resolve_entities=False, no_network=True,
                                            remove_comments=True, encoding='utf-8')

    def parse_file(self, file_path: str) -> MTPNode:
        """
        Parse a descriptor file, dispatching on its extension.

        Raises:
            UnsupportedFormatError: extension is neither a document nor an archive type
                (raised before the file is opened).
            MalformedDocumentError: the document, the archive, or any archive entry
                cannot be parsed.
        """
        ext = os.path.splitext(file_path)[1].lower()
        if ext in ARCHIVE_EXTENSIONS:
            return self._parse_archive(file_path)
        if ext in DOCUMENT_EXTENSIONS:
            with open(file_path, 'rb') as f:
                content = f.read()
            return self.parse(content)
        raise UnsupportedFormatError(ext)

    def parse(self, content: Union[str, bytes]) -> MTPNode:
        """Parse one XML document into a tree rooted at an 'MTP' folder."""
        try:
            if isinstance(content, str):
                doc = etree.fromstring(content.encode('utf-8'), self._text_parser)
            else:
                doc = etree.fromstring(content, self._xml_parser)
        except etree.XMLSyntaxError as e:
            raise MalformedDocumentError(str(e)) from e

        root = MTPNode.folder(ROOT_NAME)
        root.children.extend(self._generic_variables(doc))
        root.children.extend(self._ua_items(doc))
        root.children.extend(self._attribute_fallback(doc))
        logger.debug(f"Parsed descriptor: {len(root.children)} variables")
        return root

    # === Strategy 1: generic <Variable> elements ===

    def _generic_variables(self, doc):
        for element in doc.iter(etree.Element):
            if _local_name(element) != "Variable":
                continue
            name = element.get("Name", "Unknown")
            data_type = element.get("DataType", "Double")
            ns = element.get("NamespaceIndex", str(DEFAULT_NAMESPACE))
            identifier = element.get("NodeId", name)
            yield MTPNode.variable(name, data_type, node_id=qualify(identifier, ns))

    # === Strategy 2: OPC UA items declared as external interfaces ===

    def _ua_items(self, doc):
        for interface in doc.iter(etree.Element):
            if _is_ua_item(interface):
                yield self._ua_item(interface)

    def _ua_item(self, interface) -> MTPNode:
        name = interface.get("Name") or "Item"
        identifier = ""
        data_type = "xs:string"
        namespace = None
        access = None
        description = None

        for attribute in _children_named(interface, "Attribute"):
            attr_name = (attribute.get("Name") or "").lower()
            value = _value_text(attribute)
            has_value = value is not None and value.strip() != ""

            if attr_name == "identifier" and has_value:
                identifier = value.strip()
                declared = _declared_type(attribute)
                if declared and declared.strip():
                    data_type = declared
            elif attr_name == "namespace" and has_value:
                namespace = value.strip()
            elif attr_name == "datatype" and has_value:
                data_type = value.strip()
            elif attr_name == "access" and has_value:
                access = _parse_access(value)
            elif attr_name == "description":
                description = value

        if not identifier:
            identifier = name

        # Bare identifier; the address-space sink qualifies it with its own namespace
        return MTPNode.variable(name, data_type, node_id=identifier, access=access,
                                description=description, namespace=namespace)

    # === Strategy 3: AutomationML attribute fallback ===

    def _attribute_fallback(self, doc):
        for attribute in doc.iter(etree.Element):
            if _local_name(attribute) != "Attribute":
                continue
            parent = attribute.getparent()
            if parent is not None and _is_ua_item(parent):
                continue
            name = attribute.get("Name")
            if name is None or not name.strip():
                continue
            data_type = _declared_type(attribute) or "Double"
            identifier = name.replace(' ', '_')
            yield MTPNode.variable(name, data_type, node_id=qualify(f"AML/{identifier}"))

    # === Archives ===

    def _parse_archive(self, file_path: str) -> MTPNode:
        """
        Parse every document entry of an archive and flatten all variables into
        one root. Sub-document folders are discarded. Any failing entry fails
        the whole archive.
        """
        root = MTPNode.folder(os.path.basename(file_path), ROOT_NAME)
        try:
            with zipfile.ZipFile(file_path) as archive:
                for entry in archive.infolist():
                    if entry.is_dir() or not entry.filename.lower().endswith(DOCUMENT_EXTENSIONS):
                        continue
                    try:
                        sub_root = self.parse(archive.read(entry))
                    except MalformedDocumentError as e:
                        raise MalformedDocumentError(str(e), entry=entry.filename) from e
                    except (RuntimeError, NotImplementedError, zipfile.BadZipFile) as e:
                        # Encrypted entries, unsupported compression, CRC mismatch
                        raise MalformedDocumentError(str(e), entry=entry.filename) from e
                    root.children.extend(sub_root.children)
                    logger.info(f"Parsed archive entry {entry.filename}: "
                                f"{len(sub_root.children)} variables")
        except zipfile.BadZipFile as e:
            raise MalformedDocumentError(f"Not a valid archive: {e}") from e
        return root

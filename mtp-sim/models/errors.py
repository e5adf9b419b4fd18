"""
Exception hierarchy for descriptor loading and override persistence.
"""
from typing import Optional


class MTPError(Exception):
    """Base class for all simulator errors."""


class DescriptorError(MTPError):
    """A descriptor could not be loaded. The previous tree stays in effect."""


class UnsupportedFormatError(DescriptorError):
    """The descriptor file extension is not a recognized document or archive type."""

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file type: {extension or '(none)'}")


class MalformedDocumentError(DescriptorError):
    """The descriptor XML (or one archive entry) cannot be parsed."""

    def __init__(self, message: str, entry: Optional[str] = None):
        self.entry = entry
        if entry:
            message = f"{entry}: {message}"
        super().__init__(message)


class StorePersistenceError(MTPError):
    """Reading or writing the override store failed."""

"""
Errors raised by archive services. Views and the WebSocket consumer map them to responses.
"""


class ArchiveError(Exception):
    """Base class for archive service errors."""


class ItemNotFound(ArchiveError):
    def __init__(self, item_id):
        super().__init__(f"Item {item_id!r} not found.")
        self.item_id = item_id


class PhraseNotFound(ArchiveError):
    def __init__(self, index):
        super().__init__(f"No custom phrase at index {index}.")
        self.index = index


class StoreError(ArchiveError):
    """The archive document could not be written."""


class StoreUnreadable(StoreError):
    """The stored document exists but is corrupt or invalid; it must not be overwritten."""

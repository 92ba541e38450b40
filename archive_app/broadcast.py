"""
Push the current document to every connected WebSocket client.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

ARCHIVE_GROUP = "archive"


def document_message(document) -> dict:
    return {"action": "replaced", "data": document.to_dict()}


def broadcast_document(document) -> None:
    """Send the document to the archive group. For synchronous callers (HTTP views)."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(
        ARCHIVE_GROUP, {"type": "broadcast", "message": document_message(document)}
    )
    logger.debug("broadcast document items=%d", len(document.items))

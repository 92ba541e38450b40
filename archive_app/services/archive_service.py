"""
Shared archive operations for API and WebSocket: add, update, delete, reorder, phrases.

Every mutation reads the current document, applies the change and writes the whole
document back. Invalid input raises rest_framework ValidationError; unknown ids raise
ItemNotFound / PhraseNotFound; write failures raise StoreError, and a stored
document that cannot be loaded raises StoreUnreadable before anything is written.
"""

import logging

from rest_framework.serializers import ValidationError

from archive_app.exceptions import ItemNotFound, PhraseNotFound
from archive_app.models import AppData, DEFAULT_DIVIDER_LABEL, DividerItem, is_divider
from archive_app.serializers import (
    AppDataSerializer,
    DropSerializer,
    PhraseSerializer,
    PROTECTED_ITEM_FIELDS,
    serializer_for_type,
)
from archive_app.services import store
from archive_app.services.item_order import reorder_on_drop, shift_for_insert
from archive_app.services.sections import compute_insert_order, next_order, sort_items
from archive_app.utils import generate_id, now_iso

logger = logging.getLogger(__name__)


def get_document() -> AppData:
    return store.read_document()


def _load() -> AppData:
    # Mutations write the document back, so an unreadable file must not load as empty.
    return store.read_document(strict=True)


def replace_document(data) -> AppData:
    """Validate and store a full document, replacing whatever was there."""
    serializer = AppDataSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    document = serializer.save()
    store.write_document(document)
    logger.info("document replaced items=%d", len(document.items))
    return document


def add_item(data, visible_divider_id=None):
    """
    Create one item from its fields (id and order are assigned here).
    Widgets go to the end of the section in view, shifting later items up by one;
    dividers are appended after everything. Returns (item, document).
    """
    item_type = data.get("type")
    serializer_class = serializer_for_type(item_type)
    document = _load()

    payload = {k: v for k, v in data.items() if k not in PROTECTED_ITEM_FIELDS}
    payload["id"] = generate_id()
    payload["type"] = item_type
    if item_type == DividerItem.type:
        payload["order"] = next_order(document.items)
        if not str(payload.get("label") or "").strip():
            payload["label"] = DEFAULT_DIVIDER_LABEL
    else:
        payload["order"] = compute_insert_order(document.items, visible_divider_id)
        if not payload.get("createdAt"):
            payload["createdAt"] = now_iso()

    serializer = serializer_class(data=payload)
    serializer.is_valid(raise_exception=True)
    item = serializer.save()

    if not is_divider(item):
        shifted = shift_for_insert(document.items, item.order)
        if shifted is not None:
            document.items = shifted
    document.items = sort_items(document.items + [item])
    store.write_document(document)
    logger.info("item added item_id=%s type=%s order=%d", item.id, item.type, item.order)
    return item, document


def update_item(item_id, updates):
    """
    Apply the provided fields to one item. id, type and order are ignored.
    Returns (item, document).
    """
    document = _load()
    index, item = document.find(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    item = _apply_updates(document, index, item, updates)
    logger.info("item updated item_id=%s fields=%s", item_id, sorted(updates))
    return item, document


def toggle_collapsed(item_id):
    """Flip a divider's collapsed flag. Returns (divider, document)."""
    document = _load()
    index, item = document.find(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    if not is_divider(item):
        raise ValidationError({"type": ["Only dividers can be collapsed."]})
    item = _apply_updates(document, index, item, {"collapsed": not item.collapsed})
    logger.info("divider toggled item_id=%s collapsed=%s", item_id, item.collapsed)
    return item, document


def _apply_updates(document, index, item, updates):
    updates = {k: v for k, v in updates.items() if k not in PROTECTED_ITEM_FIELDS}
    serializer = serializer_for_type(item.type)(instance=item, data=updates, partial=True)
    serializer.is_valid(raise_exception=True)
    item = serializer.save()
    document.items[index] = item
    store.write_document(document)
    return item


def delete_item(item_id) -> AppData:
    document = _load()
    index, item = document.find(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    del document.items[index]
    store.write_document(document)
    logger.info("item deleted item_id=%s", item_id)
    return document


def replace_order(items_data) -> AppData:
    """Bulk reorder: the given item list replaces the stored one."""
    serializer = AppDataSerializer(data={"items": items_data})
    serializer.is_valid(raise_exception=True)
    document = _load()
    document.items = serializer.validated_data["items"]
    store.write_document(document)
    logger.info("items reordered count=%d", len(document.items))
    return document


def drop_item(data):
    """
    Drag-and-drop move. data: {dragged_id, target_id, position}.
    Returns (document, changed); nothing is written when the drop is a no-op.
    """
    serializer = DropSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    drop = serializer.validated_data
    document = _load()
    reordered = reorder_on_drop(
        document.items, drop["dragged_id"], drop["target_id"], drop["position"]
    )
    if reordered is None:
        logger.debug("drop ignored dragged_id=%s target_id=%s", drop["dragged_id"], drop["target_id"])
        return document, False
    document.items = reordered
    store.write_document(document)
    logger.info(
        "item dropped dragged_id=%s target_id=%s position=%s",
        drop["dragged_id"],
        drop["target_id"],
        drop["position"],
    )
    return document, True


def add_phrase(phrase) -> AppData:
    serializer = PhraseSerializer(data={"phrase": phrase})
    serializer.is_valid(raise_exception=True)
    document = _load()
    document.custom_phrases.append(serializer.validated_data["phrase"])
    store.write_document(document)
    logger.info("phrase added count=%d", len(document.custom_phrases))
    return document


def remove_phrase(index) -> AppData:
    try:
        index = int(index)
    except (TypeError, ValueError):
        raise PhraseNotFound(index) from None
    document = _load()
    if not 0 <= index < len(document.custom_phrases):
        raise PhraseNotFound(index)
    del document.custom_phrases[index]
    store.write_document(document)
    logger.info("phrase removed index=%d", index)
    return document

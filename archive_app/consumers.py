"""
WebSocket consumer for live archive updates.

Every connection joins one broadcast group and receives {"action": "replaced", "data": ...}
after each change, whoever made it. Each connection also keeps its own viewer state: the
divider currently in view (anchor for new widgets) and the hero carousel cycle.
"""

import logging

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.serializers import ValidationError

from archive_app.broadcast import ARCHIVE_GROUP, document_message
from archive_app.exceptions import ArchiveError
from archive_app.models import DividerItem
from archive_app.serializers import first_error_message
from archive_app.services import archive_service as archive_svc
from archive_app.services.hero import CarouselPicker, pick_phrase
from archive_app.services.visible_section import DividerRect, VisibleSectionTracker

logger = logging.getLogger(__name__)


class ArchiveConsumer(AsyncJsonWebsocketConsumer):
    async def connect(self):
        self.tracker = VisibleSectionTracker()
        self.picker = CarouselPicker()
        await self.channel_layer.group_add(ARCHIVE_GROUP, self.channel_name)
        await self.accept()
        document = await sync_to_async(archive_svc.get_document)()
        await self.send_json({"action": "initial", "data": document.to_dict()})
        logger.debug("ws connect channel=%s", self.channel_name)

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(ARCHIVE_GROUP, self.channel_name)

    async def receive_json(self, content):
        # Expect content: {"action": "<name>", ...action fields}
        action = content.get("action") if isinstance(content, dict) else None
        handler = getattr(self, f"on_{action}", None) if isinstance(action, str) else None
        if handler is None:
            await self.send_json({"action": "error", "message": "unknown action"})
            return
        try:
            await handler(content)
        except ValidationError as e:
            logger.warning("ws %s validation error: %s", action, first_error_message(e))
            await self.send_json({"action": "error", "message": first_error_message(e)})
        except ArchiveError as e:
            logger.warning("ws %s failed: %s", action, e)
            await self.send_json({"action": "error", "message": str(e)})

    # ---------- Mutations ----------

    async def on_add(self, content):
        item_data = content.get("item")
        if not isinstance(item_data, dict):
            raise ValidationError({"item": ["Expected an object."]})
        if "visible_divider_id" in content:
            visible_divider_id = content["visible_divider_id"]
        else:
            visible_divider_id = self.tracker.current
        _, document = await sync_to_async(archive_svc.add_item)(
            item_data, visible_divider_id=visible_divider_id
        )
        await self._broadcast(document)

    async def on_update(self, content):
        updates = content.get("updates")
        if not isinstance(updates, dict):
            raise ValidationError({"updates": ["Expected an object."]})
        _, document = await sync_to_async(archive_svc.update_item)(content.get("id"), updates)
        await self._broadcast(document)

    async def on_toggle(self, content):
        _, document = await sync_to_async(archive_svc.toggle_collapsed)(content.get("id"))
        await self._broadcast(document)

    async def on_delete(self, content):
        document = await sync_to_async(archive_svc.delete_item)(content.get("id"))
        await self._broadcast(document)

    async def on_reorder(self, content):
        document = await sync_to_async(archive_svc.replace_order)(content.get("items"))
        await self._broadcast(document)

    async def on_drop(self, content):
        document, changed = await sync_to_async(archive_svc.drop_item)(content)
        if changed:
            await self._broadcast(document)

    async def on_add_phrase(self, content):
        document = await sync_to_async(archive_svc.add_phrase)(content.get("phrase"))
        await self._broadcast(document)

    async def on_remove_phrase(self, content):
        document = await sync_to_async(archive_svc.remove_phrase)(content.get("index"))
        await self._broadcast(document)

    # ---------- Viewer state ----------

    async def on_viewport(self, content):
        """Rects: [{"id", "top", "bottom"}] relative to the viewport; viewport_height in px."""
        try:
            rects = [
                DividerRect(str(r["id"]), float(r["top"]), float(r["bottom"]))
                for r in content.get("rects") or []
            ]
            viewport_height = float(content.get("viewport_height") or 0)
        except (KeyError, TypeError, ValueError):
            raise ValidationError({"rects": ["Each rect needs id, top and bottom."]}) from None
        document = await sync_to_async(archive_svc.get_document)()
        divider_id = self.tracker.observe_rects(rects, document.items, viewport_height)
        await self.send_json({"action": "visible_divider", "divider_id": divider_id})

    async def on_next_hero(self, content):
        document = await sync_to_async(archive_svc.get_document)()
        widget = self.picker.pick(document.widgets())
        await self.send_json(
            {
                "action": "hero",
                "widget": widget.to_dict() if widget else None,
                "phrase": pick_phrase(document.custom_phrases),
            }
        )

    # ---------- Group messages ----------

    async def _broadcast(self, document):
        await self.channel_layer.group_send(
            ARCHIVE_GROUP, {"type": "broadcast", "message": document_message(document)}
        )

    async def broadcast(self, event):
        message = event["message"]
        if message.get("action") == "replaced":
            items = message["data"]["items"]
            self.tracker.retain(item["id"] for item in items if item["type"] == DividerItem.type)
        await self.send_json(message)

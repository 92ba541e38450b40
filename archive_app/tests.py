"""
Tests for archive_app: ordering and sections, visible-section tracking, hero picker,
JSON store, archive service, API, WebSocket.
"""

import asyncio
import json
import random
import tempfile
from pathlib import Path
from unittest import mock

from asgiref.sync import sync_to_async
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, override_settings
from rest_framework.serializers import ValidationError

from archive_app.exceptions import ItemNotFound, PhraseNotFound, StoreError, StoreUnreadable
from archive_app.models import (
    AppData,
    DEFAULT_DIVIDER_LABEL,
    DividerItem,
    MemoryWidget,
    ThoughtWidget,
)
from archive_app.serializers import AppDataSerializer, first_error_message
from archive_app.services import archive_service, store
from archive_app.services.hero import DEFAULT_PHRASES, CarouselPicker, all_phrases, pick_phrase
from archive_app.services.item_order import drop_position, reorder_on_drop, shift_for_insert
from archive_app.services.sections import (
    compute_insert_order,
    derive_sections,
    filter_dividers,
    group_dividers,
    sort_items,
)
from archive_app.services.visible_section import (
    DividerRect,
    IntersectionEntry,
    VisibleSectionTracker,
    intersect,
    observer_config,
)


def memory(item_id, order, **kwargs):
    return MemoryWidget(id=item_id, order=order, **kwargs)


def thought(item_id, order, **kwargs):
    return ThoughtWidget(id=item_id, order=order, **kwargs)


def divider(item_id, order, label="Section", collapsed=False):
    return DividerItem(id=item_id, order=order, label=label, collapsed=collapsed)


def orders(items):
    return {item.id: item.order for item in items}


class TemporaryStoreMixin:
    """Point ARCHIVE_DATA_PATH at a fresh temporary directory for each test."""

    def setUp(self):
        super().setUp()
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmpdir = Path(tmpdir.name)
        self.data_path = self.tmpdir / "data.json"
        settings_override = override_settings(ARCHIVE_DATA_PATH=self.data_path)
        settings_override.enable()
        self.addCleanup(settings_override.disable)

    def seed(self, items=(), phrases=()):
        store.write_document(AppData(items=list(items), custom_phrases=list(phrases)))

    def stored(self):
        return json.loads(self.data_path.read_text(encoding="utf-8"))


class DeriveSectionsTest(SimpleTestCase):
    def test_empty_list_is_one_empty_section(self):
        self.assertEqual(derive_sections([]), [{"divider": None, "widgets": []}])

    def test_one_section_per_divider_plus_leading(self):
        a = memory("a", 5)
        b = thought("b", 0)
        c = memory("c", 3)
        e = memory("e", 9)
        d1 = divider("d1", 2)
        d2 = divider("d2", 7)
        sections = derive_sections([a, d1, b, c, d2, e])

        self.assertEqual(len(sections), 3)
        self.assertEqual([s["divider"] for s in sections], [None, d1, d2])
        self.assertEqual([w.id for w in sections[0]["widgets"]], ["b"])
        self.assertEqual([w.id for w in sections[1]["widgets"]], ["c", "a"])
        self.assertEqual([w.id for w in sections[2]["widgets"]], ["e"])

        widgets = [w for s in sections for w in s["widgets"]]
        expected = [i for i in sort_items([a, d1, b, c, d2, e]) if i.type != "divider"]
        self.assertEqual(widgets, expected)

    def test_list_starting_with_divider_has_empty_leading_section(self):
        d1 = divider("d1", 0)
        sections = derive_sections([d1, memory("m", 1)])
        self.assertEqual(sections[0], {"divider": None, "widgets": []})
        self.assertIs(sections[1]["divider"], d1)

    def test_adjacent_dividers_give_empty_section(self):
        sections = derive_sections([divider("d1", 0), divider("d2", 1), memory("m", 2)])
        self.assertEqual(len(sections), 3)
        self.assertEqual(sections[1]["widgets"], [])
        self.assertEqual([w.id for w in sections[2]["widgets"]], ["m"])

    def test_equal_orders_keep_stored_position(self):
        sections = derive_sections([memory("x", 1), memory("y", 1), memory("w", 0)])
        self.assertEqual([w.id for w in sections[0]["widgets"]], ["w", "x", "y"])


class ComputeInsertOrderTest(SimpleTestCase):
    def setUp(self):
        self.items = [memory("m0", 0), divider("d1", 3), memory("m4", 4), divider("d2", 6)]

    def test_empty_list(self):
        self.assertEqual(compute_insert_order([], None), 0)

    def test_no_dividers_appends_after_max(self):
        items = [memory("a", 0), thought("b", 2), memory("c", 5)]
        self.assertEqual(compute_insert_order(items, None), 6)

    def test_no_visible_divider_targets_first_divider(self):
        self.assertEqual(compute_insert_order(self.items, None), 3)

    def test_visible_divider_targets_next_divider(self):
        self.assertEqual(compute_insert_order(self.items, "d1"), 6)

    def test_last_visible_divider_appends_after_max(self):
        self.assertEqual(compute_insert_order(self.items, "d2"), 7)

    def test_unknown_visible_divider_appends_after_max(self):
        self.assertEqual(compute_insert_order(self.items, "missing"), 7)

    def test_unsorted_input(self):
        items = list(reversed(self.items))
        self.assertEqual(compute_insert_order(items, None), 3)
        self.assertEqual(compute_insert_order(items, "d1"), 6)


class ShiftForInsertTest(SimpleTestCase):
    def test_nothing_at_or_after_insert_order(self):
        self.assertIsNone(shift_for_insert([memory("a", 0), memory("b", 1)], 2))
        self.assertIsNone(shift_for_insert([], 0))

    def test_shifts_only_items_at_or_after(self):
        items = [memory("c", 2), memory("a", 0), divider("d", 3), memory("b", 1)]
        shifted = shift_for_insert(items, 2)
        self.assertEqual([i.id for i in shifted], ["a", "b", "c", "d"])
        self.assertEqual(orders(shifted), {"a": 0, "b": 1, "c": 3, "d": 4})
        self.assertIs(shifted[0], items[1])

    def test_input_not_mutated(self):
        items = [memory("a", 0), memory("b", 1)]
        shift_for_insert(items, 0)
        self.assertEqual(orders(items), {"a": 0, "b": 1})


class ReorderOnDropTest(SimpleTestCase):
    def test_drop_on_itself_is_noop(self):
        items = [memory("a", 0), memory("b", 1)]
        self.assertIsNone(reorder_on_drop(items, "a", "a", "after"))
        self.assertEqual(orders(items), {"a": 0, "b": 1})

    def test_widget_after_last_divider(self):
        items = [divider("A", 0), memory("B", 1), divider("C", 2)]
        result = reorder_on_drop(items, "B", "C", "after")
        self.assertEqual([i.id for i in result], ["A", "C", "B"])
        self.assertEqual(orders(result), {"A": 0, "C": 1, "B": 2})

    def test_forward_drop_before_target(self):
        items = [memory("a", 0), memory("b", 1), memory("c", 2), memory("d", 3)]
        result = reorder_on_drop(items, "a", "c", "before")
        self.assertEqual([i.id for i in result], ["b", "a", "c", "d"])

    def test_backward_drop_renumbers_contiguously(self):
        items = [memory("p", 3), memory("q", 10), memory("r", 7), memory("s", 20)]
        result = reorder_on_drop(items, "s", "p", "before")
        self.assertEqual([i.id for i in result], ["s", "p", "r", "q"])
        self.assertEqual([i.order for i in result], [0, 1, 2, 3])

    def test_unknown_id_is_noop(self):
        items = [memory("a", 0), memory("b", 1)]
        self.assertIsNone(reorder_on_drop(items, "a", "zzz", "before"))
        self.assertIsNone(reorder_on_drop(items, "zzz", "a", "before"))

    def test_invalid_position(self):
        with self.assertRaises(ValueError):
            reorder_on_drop([memory("a", 0), memory("b", 1)], "a", "b", "middle")

    def test_drop_position_uses_midpoint(self):
        self.assertEqual(drop_position(100, 50, 110), "before")
        self.assertEqual(drop_position(100, 50, 125), "after")
        self.assertEqual(drop_position(100, 50, 149), "after")


class FilterDividersTest(SimpleTestCase):
    def test_filters_by_label_case_insensitive(self):
        items = [divider("d2", 4, "Зима 2023"), memory("m", 0), divider("d1", 1, "Лето 2024")]
        self.assertEqual([d.id for d in filter_dividers(items)], ["d1", "d2"])
        self.assertEqual([d.id for d in filter_dividers(items, "  лето ")], ["d1"])
        self.assertEqual(filter_dividers(items, "осень"), [])

    def test_group_by_first_letter(self):
        items = [
            divider("z", 0, "зима"),
            divider("e", 1, "Ёлка"),
            divider("b", 2, "  "),
            divider("l", 3, "Berlin"),
            divider("a", 4, "Астра"),
            divider("y", 5, "2024"),
            divider("e2", 6, "Ель"),
            divider("a2", 7, "арка"),
        ]
        groups = group_dividers(filter_dividers(items))
        self.assertEqual([letter for letter, _ in groups], ["#", "2", "А", "Е", "Ё", "З", "B"])
        self.assertEqual([d.id for d in dict(groups)["А"]], ["a", "a2"])
        self.assertEqual(group_dividers([]), [])


class VisibleSectionTrackerTest(SimpleTestCase):
    def setUp(self):
        self.items = [
            memory("m0", 0),
            divider("d1", 1),
            memory("m2", 2),
            divider("d2", 3),
            memory("m4", 4),
            divider("d3", 5),
        ]
        self.tracker = VisibleSectionTracker()

    def test_greatest_ratio_wins(self):
        current = self.tracker.observe(
            [IntersectionEntry("d1", True, 0.25), IntersectionEntry("d2", True, 0.75)],
            self.items,
        )
        self.assertEqual(current, "d2")

    def test_first_reported_wins_tie(self):
        current = self.tracker.observe(
            [IntersectionEntry("d1", True, 0.5), IntersectionEntry("d2", True, 0.5)],
            self.items,
        )
        self.assertEqual(current, "d1")

    def test_entries_leaving_are_dropped(self):
        self.tracker.observe(
            [IntersectionEntry("d1", True, 0.25), IntersectionEntry("d2", True, 0.75)],
            self.items,
        )
        current = self.tracker.observe([IntersectionEntry("d2", False, 0.0)], self.items)
        self.assertEqual(current, "d1")

    def test_fallback_last_divider_above_midpoint(self):
        bottoms = {"d1": 50, "d2": 300, "d3": 900}
        current = self.tracker.observe(
            [IntersectionEntry(d, False, 0.0) for d in bottoms], self.items, bottoms, 800
        )
        self.assertEqual(current, "d2")

    def test_fallback_none_above(self):
        bottoms = {"d1": 500, "d2": 900, "d3": 1400}
        current = self.tracker.observe([], self.items, bottoms, 800)
        self.assertIsNone(current)
        self.assertIsNone(self.tracker.current)

    def test_intersect_with_margins(self):
        # Root area is 100..900 for a 1000px viewport.
        partial = intersect(DividerRect("d", 850, 950), 1000)
        self.assertTrue(partial.is_intersecting)
        self.assertAlmostEqual(partial.ratio, 0.5)
        self.assertFalse(intersect(DividerRect("d", 0, 50), 1000).is_intersecting)
        self.assertEqual(intersect(DividerRect("d", 200, 240), 1000).ratio, 1.0)

    def test_observe_rects(self):
        rects = [DividerRect("d1", -200, -150), DividerRect("d2", 500, 540)]
        self.assertEqual(self.tracker.observe_rects(rects, self.items, 800), "d2")
        rects = [DividerRect("d1", -200, -150), DividerRect("d2", 1500, 1540)]
        self.assertEqual(self.tracker.observe_rects(rects, self.items, 800), "d1")

    def test_reset(self):
        self.tracker.observe([IntersectionEntry("d1", True, 1.0)], self.items)
        self.tracker.reset()
        self.assertIsNone(self.tracker.current)
        self.assertIsNone(self.tracker.observe([], self.items, {}, 800))

    def test_deleted_divider_is_forgotten(self):
        self.tracker.observe(
            [IntersectionEntry("d1", True, 0.5), IntersectionEntry("d2", True, 1.0)],
            self.items,
        )
        self.assertEqual(self.tracker.current, "d2")
        remaining = [item for item in self.items if item.id != "d2"]
        current = self.tracker.observe([IntersectionEntry("d1", True, 0.25)], remaining)
        self.assertEqual(current, "d1")

    def test_retain_moves_current_off_removed_divider(self):
        self.tracker.observe(
            [IntersectionEntry("d1", True, 0.5), IntersectionEntry("d2", True, 1.0)],
            self.items,
        )
        self.tracker.retain(["d1", "d3"])
        self.assertEqual(self.tracker.current, "d1")
        self.tracker.retain(["d3"])
        self.assertIsNone(self.tracker.current)

    def test_observer_config(self):
        config = observer_config()
        self.assertEqual(config["rootMargin"], "-10% 0px -10% 0px")
        self.assertEqual(config["threshold"], [0, 0.25, 0.5, 0.75, 1])


class HeroTest(SimpleTestCase):
    def test_picker_empty_and_single(self):
        picker = CarouselPicker(random.Random(1))
        self.assertIsNone(picker.pick([]))
        only = memory("a", 0)
        self.assertIs(picker.pick([only]), only)
        self.assertIs(picker.pick([only]), only)

    def test_picker_shows_every_widget_before_repeating(self):
        widgets = [memory(f"w{i}", i) for i in range(4)]
        picker = CarouselPicker(random.Random(7))
        first_cycle = [picker.pick(widgets).id for _ in range(4)]
        self.assertEqual(sorted(first_cycle), ["w0", "w1", "w2", "w3"])
        second_cycle = [picker.pick(widgets).id for _ in range(4)]
        self.assertEqual(sorted(second_cycle), ["w0", "w1", "w2", "w3"])

    def test_picker_restarts_when_widgets_change(self):
        picker = CarouselPicker(random.Random(3))
        old = [memory(f"o{i}", i) for i in range(3)]
        picker.pick(old)
        picker.pick(old)
        new = [thought(f"n{i}", i) for i in range(3)]
        picks = [picker.pick(new).id for _ in range(3)]
        self.assertEqual(sorted(picks), ["n0", "n1", "n2"])

    def test_phrases_include_custom(self):
        self.assertEqual(all_phrases([]), DEFAULT_PHRASES)
        combined = all_phrases(["Наше лето"])
        self.assertEqual(len(combined), len(DEFAULT_PHRASES) + 1)
        self.assertEqual(combined[-1], "Наше лето")

        class LastChoice:
            def choice(self, seq):
                return seq[-1]

        self.assertEqual(pick_phrase(["Наше лето"], rng=LastChoice()), "Наше лето")


class AppDataSerializerTest(SimpleTestCase):
    def test_valid_document(self):
        serializer = AppDataSerializer(
            data={
                "items": [
                    {"id": "m", "type": "memory", "order": 1, "imageData": "data:image/png;base64,AA==", "caption": "Море"},
                    {"id": "t", "type": "thought", "order": 2, "title": "Вечер", "content": "<b>тепло</b>"},
                    {"id": "d", "type": "divider", "order": 0, "label": "Лето", "collapsed": True},
                ],
                "customPhrases": ["Один"],
            }
        )
        self.assertTrue(serializer.is_valid(), serializer.errors)
        document = serializer.save()
        self.assertEqual(document.custom_phrases, ["Один"])
        self.assertEqual(document.items[0], memory("m", 1, image_data="data:image/png;base64,AA==", caption="Море"))
        self.assertEqual(document.items[1].width, 280)
        self.assertTrue(document.items[2].collapsed)

    def test_missing_keys_default_to_empty(self):
        serializer = AppDataSerializer(data={})
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.save(), AppData())

    def test_unknown_type_and_duplicate_ids_rejected(self):
        serializer = AppDataSerializer(data={"items": [{"id": "x", "type": "video", "order": 0}]})
        self.assertFalse(serializer.is_valid())
        serializer = AppDataSerializer(
            data={"items": [{"id": "x", "type": "divider", "order": 0}, {"id": "x", "type": "memory", "order": 1}]}
        )
        self.assertFalse(serializer.is_valid())
        self.assertIn("items", serializer.errors)

    def test_first_error_message(self):
        serializer = AppDataSerializer(data={"items": [{"id": "x", "type": "memory"}]})
        self.assertFalse(serializer.is_valid())
        with self.assertRaises(ValidationError) as ctx:
            serializer.is_valid(raise_exception=True)
        self.assertEqual(first_error_message(ctx.exception), "This field is required.")


class StoreTest(TemporaryStoreMixin, SimpleTestCase):
    def test_missing_file_creates_default(self):
        document = store.read_document()
        self.assertEqual(document, AppData())
        self.assertEqual(self.stored(), {"items": [], "customPhrases": []})

    def test_write_then_read(self):
        items = [divider("d", 0, "Лето"), memory("m", 1, caption="Море")]
        self.seed(items, ["Фраза"])
        document = store.read_document()
        self.assertEqual(document.items, items)
        self.assertEqual(document.custom_phrases, ["Фраза"])
        self.assertEqual(self.stored()["items"][1]["caption"], "Море")

    def test_corrupt_file_reads_as_default(self):
        self.data_path.write_text("{not json", encoding="utf-8")
        self.assertEqual(store.read_document(), AppData())
        self.assertEqual(self.data_path.read_text(encoding="utf-8"), "{not json")

    def test_invalid_document_reads_as_default(self):
        self.data_path.write_text(json.dumps({"items": [{"type": "memory"}]}), encoding="utf-8")
        self.assertEqual(store.read_document(), AppData())

    def test_strict_read_refuses_unloadable_document(self):
        self.data_path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(StoreUnreadable):
            store.read_document(strict=True)
        self.data_path.write_text(json.dumps({"items": [{"type": "memory"}]}), encoding="utf-8")
        with self.assertRaises(StoreUnreadable):
            store.read_document(strict=True)
        self.data_path.write_text("[]", encoding="utf-8")
        with self.assertRaises(StoreUnreadable):
            store.read_document(strict=True)

    def test_long_custom_phrase_is_kept(self):
        phrase = "ы" * 250
        self.data_path.write_text(
            json.dumps({"items": [], "customPhrases": [phrase]}), encoding="utf-8"
        )
        self.assertEqual(store.read_document(strict=True).custom_phrases, [phrase])

    def test_write_failure_raises_store_error(self):
        blocker = self.tmpdir / "blocker"
        blocker.write_text("", encoding="utf-8")
        with override_settings(ARCHIVE_DATA_PATH=blocker / "data.json"):
            with self.assertRaises(StoreError):
                store.write_document(AppData())


class ArchiveServiceTest(TemporaryStoreMixin, SimpleTestCase):
    def test_add_widgets_to_empty_archive(self):
        first, _ = archive_service.add_item({"type": "memory", "caption": "Первый"})
        second, document = archive_service.add_item({"type": "thought", "title": "Второй"})
        self.assertEqual(first.order, 0)
        self.assertEqual(second.order, 1)
        self.assertTrue(first.created_at.endswith("Z"))
        self.assertEqual((first.width, first.height), (300, 280))
        self.assertEqual((second.width, second.height), (280, 220))
        self.assertEqual([i.id for i in document.items], [first.id, second.id])

    def test_add_widget_into_leading_section_shifts_later_items(self):
        self.seed([memory("a", 0), divider("d1", 1), memory("b", 2)])
        item, document = archive_service.add_item({"type": "memory"})
        self.assertEqual(item.order, 1)
        self.assertEqual(orders(document.items), {"a": 0, item.id: 1, "d1": 2, "b": 3})
        self.assertEqual([i.id for i in document.items], ["a", item.id, "d1", "b"])

    def test_add_widget_into_last_section(self):
        self.seed([memory("a", 0), divider("d1", 1), memory("b", 2)])
        item, document = archive_service.add_item({"type": "thought"}, visible_divider_id="d1")
        self.assertEqual(item.order, 3)
        self.assertEqual(orders(document.items)["b"], 2)

    def test_add_divider_appends_with_default_label(self):
        self.seed([memory("a", 0), divider("d1", 1), memory("b", 5)])
        item, _ = archive_service.add_item({"type": "divider", "label": "  "}, visible_divider_id="d1")
        self.assertEqual(item.order, 6)
        self.assertEqual(item.label, DEFAULT_DIVIDER_LABEL)
        self.assertFalse(item.collapsed)

    def test_add_ignores_client_id_and_order(self):
        item, _ = archive_service.add_item({"type": "memory", "id": "mine", "order": 42})
        self.assertNotEqual(item.id, "mine")
        self.assertEqual(item.order, 0)

    def test_add_rejects_invalid_items(self):
        with self.assertRaises(ValidationError):
            archive_service.add_item({"type": "video"})
        with self.assertRaises(ValidationError):
            archive_service.add_item({"type": "thought", "flavorText": "x" * 61})
        self.assertEqual(store.read_document().items, [])

    def test_update_item(self):
        self.seed([memory("a", 0, caption="old"), memory("b", 1)])
        item, document = archive_service.update_item("a", {"caption": "new", "width": 120, "order": 9})
        self.assertEqual(item.caption, "new")
        self.assertEqual(item.width, 200)
        self.assertEqual(item.order, 0)
        self.assertEqual(store.read_document().items[0].caption, "new")

    def test_update_unknown_item(self):
        with self.assertRaises(ItemNotFound):
            archive_service.update_item("nope", {"caption": "x"})

    def test_toggle_collapsed(self):
        self.seed([divider("d", 0), memory("m", 1)])
        item, _ = archive_service.toggle_collapsed("d")
        self.assertTrue(item.collapsed)
        item, _ = archive_service.toggle_collapsed("d")
        self.assertFalse(item.collapsed)
        with self.assertRaises(ValidationError):
            archive_service.toggle_collapsed("m")

    def test_delete_item(self):
        self.seed([memory("a", 0), memory("b", 1)])
        document = archive_service.delete_item("a")
        self.assertEqual([i.id for i in document.items], ["b"])
        with self.assertRaises(ItemNotFound):
            archive_service.delete_item("a")

    def test_replace_order(self):
        self.seed([memory("a", 0), memory("b", 1)], ["keep"])
        document = archive_service.replace_order(
            [{"id": "b", "type": "memory", "order": 0}, {"id": "a", "type": "memory", "order": 1}]
        )
        self.assertEqual(orders(document.items), {"a": 1, "b": 0})
        self.assertEqual(store.read_document().custom_phrases, ["keep"])

    def test_drop_item(self):
        self.seed([divider("A", 0), memory("B", 1), divider("C", 2)])
        document, changed = archive_service.drop_item(
            {"dragged_id": "B", "target_id": "C", "position": "after"}
        )
        self.assertTrue(changed)
        self.assertEqual(orders(document.items), {"A": 0, "C": 1, "B": 2})
        document, changed = archive_service.drop_item(
            {"dragged_id": "B", "target_id": "B", "position": "before"}
        )
        self.assertFalse(changed)
        with self.assertRaises(ValidationError):
            archive_service.drop_item({"dragged_id": "B", "target_id": "C", "position": "on"})

    def test_phrases(self):
        document = archive_service.add_phrase("  Наше лето  ")
        self.assertEqual(document.custom_phrases, ["Наше лето"])
        archive_service.add_phrase("Вторая")
        with self.assertRaises(ValidationError):
            archive_service.add_phrase("   ")
        document = archive_service.remove_phrase(0)
        self.assertEqual(document.custom_phrases, ["Вторая"])
        with self.assertRaises(PhraseNotFound):
            archive_service.remove_phrase(5)
        with self.assertRaises(PhraseNotFound):
            archive_service.remove_phrase(-1)


    def test_mutation_leaves_unloadable_file_untouched(self):
        raw = json.dumps(
            {
                "items": [
                    {"id": "keep", "type": "memory", "caption": "keep me", "order": 0},
                    {"id": "bad", "type": "video", "order": 1},
                ],
                "customPhrases": [],
            }
        )
        self.data_path.write_text(raw, encoding="utf-8")
        with self.assertRaises(StoreUnreadable):
            archive_service.add_phrase("new")
        with self.assertRaises(StoreUnreadable):
            archive_service.add_item({"type": "memory"})
        with self.assertRaises(StoreUnreadable):
            archive_service.delete_item("keep")
        self.assertEqual(self.data_path.read_text(encoding="utf-8"), raw)

    def test_add_phrase_keeps_items_next_to_long_phrase(self):
        self.data_path.write_text(
            json.dumps(
                {
                    "items": [{"id": "keep", "type": "memory", "caption": "keep me", "order": 0}],
                    "customPhrases": ["ы" * 250],
                }
            ),
            encoding="utf-8",
        )
        document = archive_service.add_phrase("new")
        self.assertEqual([i.id for i in document.items], ["keep"])
        self.assertEqual(len(self.stored()["items"]), 1)
        self.assertEqual(self.stored()["customPhrases"], ["ы" * 250, "new"])

    def test_toggle_reads_and_writes_once(self):
        self.seed([divider("d", 0)])
        with mock.patch.object(store, "read_document", wraps=store.read_document) as read, \
                mock.patch.object(store, "write_document", wraps=store.write_document) as write:
            archive_service.toggle_collapsed("d")
        self.assertEqual(read.call_count, 1)
        self.assertEqual(write.call_count, 1)
        self.assertTrue(self.stored()["items"][0]["collapsed"])


class ApiDataTest(TemporaryStoreMixin, SimpleTestCase):
    def test_get_default_document(self):
        response = self.client.get("/api/data/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content), {"items": [], "customPhrases": []})

    def test_post_replaces_document(self):
        payload = {
            "items": [
                {"id": "d", "type": "divider", "label": "Лето", "collapsed": False, "order": 0},
                {"id": "m", "type": "memory", "order": 1, "caption": "Море"},
            ],
            "customPhrases": ["Фраза"],
        }
        response = self.client.post("/api/data/", data=json.dumps(payload), content_type="application/json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content), {"success": True})

        data = json.loads(self.client.get("/api/data/").content)
        self.assertEqual(data["customPhrases"], ["Фраза"])
        self.assertEqual(data["items"][1]["caption"], "Море")
        self.assertEqual(data["items"][1]["width"], 300)

    def test_post_invalid_document(self):
        payload = {"items": [{"id": "x", "type": "divider", "order": 0}, {"id": "x", "type": "divider", "order": 1}]}
        response = self.client.post("/api/data/", data=json.dumps(payload), content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("items", json.loads(response.content)["errors"])

    def test_post_invalid_json(self):
        response = self.client.post("/api/data/", data="{oops", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.content), {"error": "Invalid JSON"})

    def test_post_write_failure(self):
        blocker = self.tmpdir / "blocker"
        blocker.write_text("", encoding="utf-8")
        with override_settings(ARCHIVE_DATA_PATH=blocker / "data.json"):
            response = self.client.post("/api/data/", data="{}", content_type="application/json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(json.loads(response.content), {"error": "Failed to save data"})

    def test_method_not_allowed(self):
        response = self.client.delete("/api/data/")
        self.assertEqual(response.status_code, 405)

    def test_sections_and_insert_order(self):
        self.seed([memory("a", 0), divider("d1", 1, "Лето"), memory("b", 2), divider("d2", 3, "Зима")])
        data = json.loads(self.client.get("/api/sections/").content)
        self.assertEqual(len(data["sections"]), 3)
        self.assertIsNone(data["sections"][0]["divider"])
        self.assertEqual(data["sections"][1]["divider"]["label"], "Лето")
        self.assertEqual([w["id"] for w in data["sections"][1]["widgets"]], ["b"])

        self.assertEqual(json.loads(self.client.get("/api/insert-order/").content), {"order": 1})
        response = self.client.get("/api/insert-order/", {"visible_divider_id": "d1"})
        self.assertEqual(json.loads(response.content), {"order": 3})
        response = self.client.get("/api/insert-order/", {"visible_divider_id": "d2"})
        self.assertEqual(json.loads(response.content), {"order": 4})

    def test_dividers_search(self):
        self.seed([divider("d1", 0, "Лето 2024"), divider("d2", 1, "Зима")])
        data = json.loads(self.client.get("/api/dividers/", {"q": "лето"}).content)
        self.assertEqual([d["id"] for d in data["dividers"]], ["d1"])
        self.assertEqual(data["groups"], [{"letter": "Л", "dividers": data["dividers"]}])

    def test_dividers_grouped_by_letter(self):
        self.seed([divider("d1", 0, "Лето"), divider("d2", 1, "Зима"), divider("d3", 2, "лес")])
        data = json.loads(self.client.get("/api/dividers/").content)
        self.assertEqual([g["letter"] for g in data["groups"]], ["З", "Л"])
        self.assertEqual([d["id"] for d in data["groups"][1]["dividers"]], ["d1", "d3"])

    def test_mutation_on_unloadable_file_fails_without_writing(self):
        self.data_path.write_text("{not json", encoding="utf-8")
        self.assertEqual(self.client.get("/api/data/").json(), {"items": [], "customPhrases": []})
        response = self.client.post(
            "/api/phrases/", data=json.dumps({"phrase": "Своя"}), content_type="application/json"
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.data_path.read_text(encoding="utf-8"), "{not json")

    def test_hero_phrase(self):
        self.seed(phrases=["Своя"])
        data = json.loads(self.client.get("/api/hero/").content)
        self.assertIn(data["phrase"], all_phrases(["Своя"]))

    def test_page_shell(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'id="archive-config"')
        self.assertContains(response, "rootMargin")


class ApiItemsTest(TemporaryStoreMixin, SimpleTestCase):
    def setUp(self):
        super().setUp()
        self.seed([memory("a", 0), divider("d1", 1, "Лето"), memory("b", 2)])

    def test_create_item_in_visible_section(self):
        response = self.client.post(
            "/api/items/",
            data=json.dumps({"type": "thought", "title": "Вечер", "visible_divider_id": "d1"}),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 201)
        data = json.loads(response.content)
        self.assertEqual(data["title"], "Вечер")
        self.assertEqual(data["order"], 3)

    def test_create_item_in_leading_section(self):
        response = self.client.post(
            "/api/items/", data=json.dumps({"type": "memory"}), content_type="application/json"
        )
        self.assertEqual(json.loads(response.content)["order"], 1)
        stored = {i["id"]: i["order"] for i in self.stored()["items"]}
        self.assertEqual(stored["d1"], 2)
        self.assertEqual(stored["b"], 3)

    def test_create_item_invalid(self):
        response = self.client.post(
            "/api/items/", data=json.dumps({"type": "video"}), content_type="application/json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("type", json.loads(response.content)["errors"])

    def test_patch_item(self):
        response = self.client.patch(
            "/api/items/a/", data=json.dumps({"caption": "Море"}), content_type="application/json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)["caption"], "Море")

    def test_patch_item_not_found(self):
        response = self.client.patch(
            "/api/items/zzz/", data=json.dumps({"caption": "x"}), content_type="application/json"
        )
        self.assertEqual(response.status_code, 404)

    def test_delete_item(self):
        response = self.client.delete("/api/items/a/")
        self.assertEqual(response.status_code, 204)
        self.assertEqual([i["id"] for i in self.stored()["items"]], ["d1", "b"])
        self.assertEqual(self.client.delete("/api/items/a/").status_code, 404)

    def test_toggle_divider(self):
        response = self.client.post("/api/items/d1/toggle/")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(json.loads(response.content)["collapsed"])
        self.assertEqual(self.client.post("/api/items/a/toggle/").status_code, 400)

    def test_reorder_by_drop(self):
        response = self.client.put(
            "/api/reorder/",
            data=json.dumps({"dragged_id": "a", "target_id": "b", "position": "after"}),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual({i["id"]: i["order"] for i in data["items"]}, {"d1": 0, "b": 1, "a": 2})

    def test_reorder_full_list(self):
        items = [
            {"id": "b", "type": "memory", "order": 0},
            {"id": "d1", "type": "divider", "label": "Лето", "order": 1},
            {"id": "a", "type": "memory", "order": 2},
        ]
        response = self.client.put("/api/reorder/", data=json.dumps({"items": items}), content_type="application/json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([i["id"] for i in self.stored()["items"]], ["b", "d1", "a"])

    def test_phrases(self):
        response = self.client.post(
            "/api/phrases/", data=json.dumps({"phrase": "Своя"}), content_type="application/json"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(json.loads(response.content), {"customPhrases": ["Своя"]})
        self.assertEqual(self.client.delete("/api/phrases/3/").status_code, 404)
        response = self.client.delete("/api/phrases/0/")
        self.assertEqual(json.loads(response.content), {"customPhrases": []})


class WebSocketTest(TemporaryStoreMixin, SimpleTestCase):
    origin = [(b"origin", b"http://localhost")]

    def communicator(self):
        from memoria_project.asgi import application as ws_application

        return WebsocketCommunicator(ws_application, "/ws/archive/", headers=self.origin)

    def test_connect_sends_initial_document(self):
        self.seed([memory("a", 0)], ["Своя"])

        async def run():
            communicator = self.communicator()
            connected, _ = await communicator.connect()
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return connected, message

        connected, message = asyncio.run(run())
        self.assertTrue(connected)
        self.assertEqual(message["action"], "initial")
        self.assertEqual(message["data"]["customPhrases"], ["Своя"])
        self.assertEqual(message["data"]["items"][0]["id"], "a")

    def test_connect_without_origin_rejected(self):
        from memoria_project.asgi import application as ws_application

        async def run():
            communicator = WebsocketCommunicator(ws_application, "/ws/archive/")
            connected, _ = await communicator.connect()
            return connected

        self.assertFalse(asyncio.run(run()))

    def test_unknown_action(self):
        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "dance"})
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return message

        self.assertEqual(asyncio.run(run()), {"action": "error", "message": "unknown action"})

    def test_add_uses_tracked_visible_divider(self):
        self.seed([memory("a", 0), divider("d1", 1), memory("b", 2), divider("d2", 3), memory("c", 4)])

        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to(
                {
                    "action": "viewport",
                    "viewport_height": 800,
                    "rects": [
                        {"id": "d1", "top": 300, "bottom": 340},
                        {"id": "d2", "top": 1200, "bottom": 1240},
                    ],
                }
            )
            visible = await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "add", "item": {"type": "memory", "caption": "Новое"}})
            replaced = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return visible, replaced

        visible, replaced = asyncio.run(run())
        self.assertEqual(visible, {"action": "visible_divider", "divider_id": "d1"})
        self.assertEqual(replaced["action"], "replaced")
        by_caption = {i.get("caption"): i["order"] for i in replaced["data"]["items"] if i["type"] == "memory"}
        self.assertEqual(by_caption["Новое"], 3)
        stored = {i["id"]: i["order"] for i in self.stored()["items"]}
        self.assertEqual(stored["d2"], 4)
        self.assertEqual(stored["c"], 5)

    def test_update_unknown_item_reports_error(self):
        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "update", "id": "zzz", "updates": {"caption": "x"}})
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return message

        message = asyncio.run(run())
        self.assertEqual(message["action"], "error")
        self.assertIn("zzz", message["message"])

    def test_next_hero(self):
        self.seed([memory("a", 0, caption="Море"), divider("d", 1)])

        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "next_hero"})
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return message

        message = asyncio.run(run())
        self.assertEqual(message["action"], "hero")
        self.assertEqual(message["widget"]["id"], "a")
        self.assertIn(message["phrase"], DEFAULT_PHRASES)

    def test_http_mutation_is_broadcast(self):
        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            response = await sync_to_async(self.client.post)(
                "/api/phrases/", data=json.dumps({"phrase": "Своя"}), content_type="application/json"
            )
            message = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return response.status_code, message

        status, message = asyncio.run(run())
        self.assertEqual(status, 201)
        self.assertEqual(message["action"], "replaced")
        self.assertEqual(message["data"]["customPhrases"], ["Своя"])

    def test_deleted_divider_no_longer_anchors_add(self):
        self.seed([divider("d1", 0), memory("x", 1), divider("d3", 2), memory("y", 3), divider("d2", 4)])

        async def run():
            communicator = self.communicator()
            await communicator.connect()
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to(
                {
                    "action": "viewport",
                    "viewport_height": 1000,
                    "rects": [
                        {"id": "d1", "top": 850, "bottom": 950},
                        {"id": "d2", "top": 200, "bottom": 240},
                        {"id": "d3", "top": 1500, "bottom": 1540},
                    ],
                }
            )
            visible = await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "delete", "id": "d2"})
            await communicator.receive_json_from(timeout=2)
            await communicator.send_json_to({"action": "add", "item": {"type": "memory", "caption": "Новое"}})
            replaced = await communicator.receive_json_from(timeout=2)
            await communicator.disconnect()
            return visible, replaced

        visible, replaced = asyncio.run(run())
        self.assertEqual(visible["divider_id"], "d2")
        orders_by_id = {i["id"]: i["order"] for i in replaced["data"]["items"]}
        new_id = next(i["id"] for i in replaced["data"]["items"] if i.get("caption") == "Новое")
        self.assertEqual(orders_by_id[new_id], 2)
        self.assertEqual(orders_by_id["d3"], 3)
        self.assertEqual(orders_by_id["y"], 4)

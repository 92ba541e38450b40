"""
Validation of incoming archive JSON (camelCase wire format) into model instances.
"""

import dataclasses

from rest_framework import serializers

from archive_app.models import (
    AppData,
    DividerItem,
    FLAVOR_TEXT_MAX_LENGTH,
    MemoryWidget,
    MEMORY_DEFAULT_HEIGHT,
    MEMORY_DEFAULT_WIDTH,
    ThoughtWidget,
    THOUGHT_DEFAULT_HEIGHT,
    THOUGHT_DEFAULT_WIDTH,
    WIDGET_MIN_HEIGHT,
    WIDGET_MIN_WIDTH,
)

ITEM_ID_MAX_LENGTH = 64

# Keys that only the ordering services may change.
PROTECTED_ITEM_FIELDS = ("id", "type", "order")


class _ItemSerializer(serializers.Serializer):
    """Common fields; subclasses set model and list their own fields."""

    model = None

    id = serializers.CharField(max_length=ITEM_ID_MAX_LENGTH)
    type = serializers.CharField()
    order = serializers.IntegerField()

    def validate_type(self, value):
        if value != self.model.type:
            raise serializers.ValidationError(f"Expected type {self.model.type!r}.")
        return value

    def create(self, validated_data):
        validated_data.pop("type", None)
        return self.model(**validated_data)

    def update(self, instance, validated_data):
        for key in PROTECTED_ITEM_FIELDS:
            validated_data.pop(key, None)
        return dataclasses.replace(instance, **validated_data)


class _WidgetSerializer(_ItemSerializer):
    def validate_width(self, value):
        return max(value, WIDGET_MIN_WIDTH)

    def validate_height(self, value):
        return max(value, WIDGET_MIN_HEIGHT)


class MemoryWidgetSerializer(_WidgetSerializer):
    model = MemoryWidget

    imageData = serializers.CharField(
        source="image_data", required=False, allow_blank=True, default="", trim_whitespace=False
    )
    caption = serializers.CharField(required=False, allow_blank=True, default="")
    createdAt = serializers.CharField(
        source="created_at", required=False, allow_blank=True, default=""
    )
    width = serializers.IntegerField(required=False, default=MEMORY_DEFAULT_WIDTH)
    height = serializers.IntegerField(required=False, default=MEMORY_DEFAULT_HEIGHT)


class ThoughtWidgetSerializer(_WidgetSerializer):
    model = ThoughtWidget

    title = serializers.CharField(required=False, allow_blank=True, default="")
    content = serializers.CharField(
        required=False, allow_blank=True, default="", trim_whitespace=False
    )
    flavorText = serializers.CharField(
        source="flavor_text",
        required=False,
        allow_blank=True,
        default="",
        max_length=FLAVOR_TEXT_MAX_LENGTH,
    )
    createdAt = serializers.CharField(
        source="created_at", required=False, allow_blank=True, default=""
    )
    width = serializers.IntegerField(required=False, default=THOUGHT_DEFAULT_WIDTH)
    height = serializers.IntegerField(required=False, default=THOUGHT_DEFAULT_HEIGHT)


class DividerItemSerializer(_ItemSerializer):
    model = DividerItem

    label = serializers.CharField(required=False, allow_blank=True, default="")
    collapsed = serializers.BooleanField(required=False, default=False)


ITEM_SERIALIZERS = {
    MemoryWidget.type: MemoryWidgetSerializer,
    ThoughtWidget.type: ThoughtWidgetSerializer,
    DividerItem.type: DividerItemSerializer,
}


def serializer_for_type(item_type):
    serializer_class = ITEM_SERIALIZERS.get(item_type)
    if serializer_class is None:
        raise serializers.ValidationError({"type": [f"Unknown item type {item_type!r}."]})
    return serializer_class


class ItemField(serializers.Field):
    """One polymorphic item, dispatched on its "type" key."""

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            raise serializers.ValidationError("Expected an object.")
        serializer = serializer_for_type(data.get("type"))(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer.save()

    def to_representation(self, value):
        return value.to_dict()


class AppDataSerializer(serializers.Serializer):
    items = serializers.ListField(child=ItemField(), required=False, default=list)
    customPhrases = serializers.ListField(
        child=serializers.CharField(allow_blank=True, trim_whitespace=False),
        source="custom_phrases",
        required=False,
        default=list,
    )

    def validate_items(self, items):
        seen = set()
        for item in items:
            if item.id in seen:
                raise serializers.ValidationError(f"Duplicate item id {item.id!r}.")
            seen.add(item.id)
        return items

    def create(self, validated_data):
        return AppData(**validated_data)


class PhraseSerializer(serializers.Serializer):
    phrase = serializers.CharField()


class DropSerializer(serializers.Serializer):
    dragged_id = serializers.CharField(max_length=ITEM_ID_MAX_LENGTH)
    target_id = serializers.CharField(max_length=ITEM_ID_MAX_LENGTH)
    position = serializers.ChoiceField(choices=["before", "after"])


def first_error_message(exc) -> str:
    """Flatten a DRF ValidationError into one readable message."""
    detail = exc.detail
    while isinstance(detail, (list, dict)) and detail:
        detail = detail[0] if isinstance(detail, list) else next(iter(detail.values()))
    return str(detail) if detail else "Invalid data."

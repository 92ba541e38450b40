from django.urls import path

from archive_app import api_views

urlpatterns = [
    path("data/", api_views.api_data, name="api_data"),
    path("sections/", api_views.api_sections, name="api_sections"),
    path("insert-order/", api_views.api_insert_order, name="api_insert_order"),
    path("dividers/", api_views.api_dividers, name="api_dividers"),
    path("hero/", api_views.api_hero, name="api_hero"),
    path("items/", api_views.api_create_item, name="api_create_item"),
    path("items/<str:item_id>/", api_views.api_item_detail, name="api_item_detail"),
    path("items/<str:item_id>/toggle/", api_views.api_toggle_item, name="api_toggle_item"),
    path("reorder/", api_views.api_reorder, name="api_reorder"),
    path("phrases/", api_views.api_add_phrase, name="api_add_phrase"),
    path("phrases/<int:index>/", api_views.api_remove_phrase, name="api_remove_phrase"),
]

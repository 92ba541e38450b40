"""
REST API views for the archive document, items and phrases. JSON only.
"""

import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework.serializers import ValidationError

from archive_app.broadcast import broadcast_document
from archive_app.exceptions import ItemNotFound, PhraseNotFound, StoreError
from archive_app.serializers import first_error_message
from archive_app.services import archive_service as archive_svc
from archive_app.services.hero import pick_phrase
from archive_app.services.sections import (
    compute_insert_order,
    derive_sections,
    filter_dividers,
    group_dividers,
    sections_to_dict,
)
from archive_app.utils import get_request_json

logger = logging.getLogger(__name__)


def _json_400(message: str, errors=None):
    return JsonResponse({"error": message, "errors": errors or {}}, status=400)


def _json_404(message: str = "Not found"):
    return JsonResponse({"error": message}, status=404)


def _json_500(message: str = "Failed to save data"):
    return JsonResponse({"error": message}, status=500)


def _validation_400(e: ValidationError):
    errors = e.detail if isinstance(e.detail, dict) else {"non_field_errors": e.detail}
    return _json_400(first_error_message(e), errors)


# ---------- Document ----------


@require_http_methods(["GET"])
def _get_data(request):
    """GET /api/data/ - the whole document (created empty if missing)."""
    document = archive_svc.get_document()
    logger.debug("api get_data items=%d", len(document.items))
    return JsonResponse(document.to_dict())


@require_http_methods(["POST"])
@csrf_exempt
def _post_data(request):
    """POST /api/data/ - replace the whole document."""
    body, err = get_request_json(request)
    if err is not None:
        return err
    try:
        document = archive_svc.replace_document(body)
    except ValidationError as e:
        logger.warning("api post_data validation error: %s", first_error_message(e))
        return _validation_400(e)
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api post_data items=%d", len(document.items))
    return JsonResponse({"success": True})


@require_http_methods(["GET"])
def _get_sections(request):
    """GET /api/sections/ - items grouped by divider."""
    document = archive_svc.get_document()
    return JsonResponse({"sections": sections_to_dict(derive_sections(document.items))})


@require_http_methods(["GET"])
def _get_insert_order(request):
    """GET /api/insert-order/?visible_divider_id=<id> - order a new widget would take."""
    visible_divider_id = request.GET.get("visible_divider_id") or None
    document = archive_svc.get_document()
    order = compute_insert_order(document.items, visible_divider_id)
    logger.debug("api insert_order visible_divider_id=%s order=%d", visible_divider_id, order)
    return JsonResponse({"order": order})


@require_http_methods(["GET"])
def _get_dividers(request):
    """GET /api/dividers/?q=<text> - section navigator."""
    document = archive_svc.get_document()
    dividers = filter_dividers(document.items, request.GET.get("q", ""))
    groups = [
        {"letter": letter, "dividers": [d.to_dict() for d in members]}
        for letter, members in group_dividers(dividers)
    ]
    return JsonResponse({"dividers": [d.to_dict() for d in dividers], "groups": groups})


@require_http_methods(["GET"])
def _get_hero(request):
    """GET /api/hero/ - one caption phrase (defaults plus custom phrases)."""
    document = archive_svc.get_document()
    return JsonResponse({"phrase": pick_phrase(document.custom_phrases)})


# ---------- Items ----------


@require_http_methods(["POST"])
@csrf_exempt
def _create_item(request):
    """POST /api/items/ - add an item into the section in view (visible_divider_id)."""
    body, err = get_request_json(request)
    if err is not None:
        return err
    visible_divider_id = body.pop("visible_divider_id", None)
    try:
        item, document = archive_svc.add_item(body, visible_divider_id=visible_divider_id)
    except ValidationError as e:
        logger.warning("api create_item validation error: %s", first_error_message(e))
        return _validation_400(e)
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api create_item item_id=%s order=%d", item.id, item.order)
    return JsonResponse(item.to_dict(), status=201)


@require_http_methods(["PATCH", "PUT"])
@csrf_exempt
def _patch_item(request, item_id):
    """PATCH /api/items/<id>/ - update item fields."""
    body, err = get_request_json(request)
    if err is not None:
        return err
    try:
        item, document = archive_svc.update_item(item_id, body)
    except ItemNotFound:
        logger.debug("api item 404 item_id=%s", item_id)
        return _json_404("Item not found.")
    except ValidationError as e:
        logger.warning("api patch_item validation error item_id=%s", item_id)
        return _validation_400(e)
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api patch_item item_id=%s", item_id)
    return JsonResponse(item.to_dict())


@require_http_methods(["DELETE"])
@csrf_exempt
def _delete_item(request, item_id):
    """DELETE /api/items/<id>/ - delete item."""
    try:
        document = archive_svc.delete_item(item_id)
    except ItemNotFound:
        logger.debug("api item 404 item_id=%s", item_id)
        return _json_404("Item not found.")
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api delete_item item_id=%s", item_id)
    return JsonResponse({"ok": True}, status=204)


@require_http_methods(["POST"])
@csrf_exempt
def _toggle_item(request, item_id):
    """POST /api/items/<id>/toggle/ - collapse or expand a divider."""
    try:
        item, document = archive_svc.toggle_collapsed(item_id)
    except ItemNotFound:
        return _json_404("Item not found.")
    except ValidationError as e:
        return _validation_400(e)
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api toggle_item item_id=%s collapsed=%s", item_id, item.collapsed)
    return JsonResponse(item.to_dict())


# ---------- Reorder ----------


@require_http_methods(["PATCH", "PUT"])
@csrf_exempt
def _reorder(request):
    """
    PUT /api/reorder/ - either {"items": [...]} to replace the full order, or
    {"dragged_id", "target_id", "position"} for a drag-and-drop move.
    """
    body, err = get_request_json(request)
    if err is not None:
        return err
    try:
        if "items" in body:
            document = archive_svc.replace_order(body["items"])
            changed = True
        else:
            document, changed = archive_svc.drop_item(body)
    except ValidationError as e:
        logger.warning("api reorder validation error: %s", first_error_message(e))
        return _validation_400(e)
    except StoreError:
        return _json_500()
    if changed:
        broadcast_document(document)
    logger.info("api reorder changed=%s", changed)
    return JsonResponse(document.to_dict())


# ---------- Phrases ----------


@require_http_methods(["POST"])
@csrf_exempt
def _add_phrase(request):
    """POST /api/phrases/ - append a custom hero phrase. Body: {"phrase": "..."}."""
    body, err = get_request_json(request)
    if err is not None:
        return err
    try:
        document = archive_svc.add_phrase(body.get("phrase"))
    except ValidationError as e:
        return _validation_400(e)
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api add_phrase count=%d", len(document.custom_phrases))
    return JsonResponse({"customPhrases": document.custom_phrases}, status=201)


@require_http_methods(["DELETE"])
@csrf_exempt
def _remove_phrase(request, index):
    """DELETE /api/phrases/<index>/ - remove a custom phrase by position."""
    try:
        document = archive_svc.remove_phrase(index)
    except PhraseNotFound:
        logger.debug("api phrase 404 index=%s", index)
        return _json_404("Phrase not found.")
    except StoreError:
        return _json_500()
    broadcast_document(document)
    logger.info("api remove_phrase index=%s", index)
    return JsonResponse({"customPhrases": document.custom_phrases})


# ---------- Dispatchers (same path, different methods) ----------


@csrf_exempt
def api_data(request):
    """GET or POST /api/data/."""
    if request.method == "GET":
        return _get_data(request)
    if request.method == "POST":
        return _post_data(request)
    logger.warning("api_data method not allowed: %s", request.method)
    return JsonResponse({"error": "Method not allowed"}, status=405)


@csrf_exempt
def api_item_detail(request, item_id):
    """PATCH or DELETE /api/items/<id>/."""
    if request.method in ("PATCH", "PUT"):
        return _patch_item(request, item_id)
    if request.method == "DELETE":
        return _delete_item(request, item_id)
    logger.warning("api_item_detail method not allowed: %s", request.method)
    return JsonResponse({"error": "Method not allowed"}, status=405)


# URL route names (urls.py references these)
api_sections = _get_sections
api_insert_order = _get_insert_order
api_dividers = _get_dividers
api_hero = _get_hero
api_create_item = _create_item
api_toggle_item = _toggle_item
api_reorder = _reorder
api_add_phrase = _add_phrase
api_remove_phrase = _remove_phrase

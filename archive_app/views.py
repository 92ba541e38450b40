from django.conf import settings
from django.shortcuts import render

from archive_app.services.hero import CAROUSEL_INTERVAL, PHRASE_INTERVAL
from archive_app.services.visible_section import observer_config


def spa_view(request):
    """Page shell; the client renders everything from /api/data/ and /ws/archive/."""
    config = {
        "pollInterval": settings.ARCHIVE_POLL_INTERVAL,
        "phraseInterval": PHRASE_INTERVAL,
        "carouselInterval": CAROUSEL_INTERVAL,
        "observer": observer_config(),
    }
    return render(request, "index.html", {"archive_config": config})

"""
URL configuration for memoria_project.
API under /api/; the page shell at /.
Static files served in DEBUG when using Daphne (runserver serves them automatically).
"""

from django.conf import settings
from django.conf.urls.static import static
from django.urls import include, path

from archive_app.views import spa_view

urlpatterns = [
    path("api/", include("archive_app.urls")),
    path("", spa_view, name="home"),
]

if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)

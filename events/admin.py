from django.contrib import admin
from django.http import HttpRequest

from events.models import Event


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "series", "start_date", "status", "organization")
    list_filter = ("status", "visibility", "organization")
    search_fields = ("slug", "name")
    readonly_fields = ("slug", "created", "modified")
    raw_id_fields = ("series", "created_by")

    def get_queryset(self, request: HttpRequest):
        return Event.original_manager.select_related("organization", "series")

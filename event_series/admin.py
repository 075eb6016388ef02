from django.contrib import admin
from django.http import HttpRequest

from event_series.models import EventSeries, RecurrenceRule, SeriesTemplateRevision


class OrganizationModelAdmin(admin.ModelAdmin):
    def get_queryset(self, request: HttpRequest):
        """Admins see every organization, so bypass the tenant-checking manager."""
        return self.model.original_manager.select_related("organization")


class SeriesTemplateRevisionInline(admin.TabularInline):
    model = SeriesTemplateRevision
    fields = ("effective_from", "patch", "created_by", "created")
    readonly_fields = ("effective_from", "patch", "created_by", "created")
    extra = 0

    def get_queryset(self, request: HttpRequest):
        return SeriesTemplateRevision.original_manager.all()


@admin.register(EventSeries)
class EventSeriesAdmin(OrganizationModelAdmin):
    list_display = (
        "slug",
        "name",
        "organization",
        "time_zone",
        "recurrence_description",
        "template_event_slug",
        "created",
    )
    list_filter = ("organization",)
    search_fields = ("slug", "name")
    readonly_fields = ("slug", "created", "modified")
    inlines = (SeriesTemplateRevisionInline,)

    def get_queryset(self, request: HttpRequest):
        return super().get_queryset(request).select_related("recurrence_rule")


@admin.register(RecurrenceRule)
class RecurrenceRuleAdmin(OrganizationModelAdmin):
    list_display = ("id", "frequency", "interval", "count", "until", "by_weekday", "organization")
    list_filter = ("frequency",)

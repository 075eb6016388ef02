from django.db.models import TextChoices


class EventType(TextChoices):
    IN_PERSON = "in-person", "In Person"
    ONLINE = "online", "Online"
    HYBRID = "hybrid", "Hybrid"


class EventStatus(TextChoices):
    DRAFT = "draft", "Draft"
    PUBLISHED = "published", "Published"
    CANCELLED = "cancelled", "Cancelled"


class EventVisibility(TextChoices):
    PUBLIC = "public", "Public"
    AUTHENTICATED = "authenticated", "Authenticated"
    PRIVATE = "private", "Private"


# Fields copied from a series template onto materialized occurrences and
# editable through "this and future" updates.
EVENT_BUSINESS_FIELDS = (
    "name",
    "description",
    "type",
    "location",
    "location_online",
    "max_attendees",
    "require_approval",
    "approval_question",
    "allow_waitlist",
    "status",
    "visibility",
)

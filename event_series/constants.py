from django.db.models import TextChoices


class RecurrenceFrequency(TextChoices):
    DAILY = "DAILY", "Daily"
    WEEKLY = "WEEKLY", "Weekly"
    MONTHLY = "MONTHLY", "Monthly"
    YEARLY = "YEARLY", "Yearly"


class RecurrenceWeekday(TextChoices):
    MONDAY = "MO", "Monday"
    TUESDAY = "TU", "Tuesday"
    WEDNESDAY = "WE", "Wednesday"
    THURSDAY = "TH", "Thursday"
    FRIDAY = "FR", "Friday"
    SATURDAY = "SA", "Saturday"
    SUNDAY = "SU", "Sunday"


FREQUENCY_UNITS = {
    RecurrenceFrequency.DAILY: ("day", "days"),
    RecurrenceFrequency.WEEKLY: ("week", "weeks"),
    RecurrenceFrequency.MONTHLY: ("month", "months"),
    RecurrenceFrequency.YEARLY: ("year", "years"),
}

DEFAULT_MAX_OCCURRENCES = 1000
DEFAULT_MAX_SPAN_YEARS = 10
DEFAULT_LISTING_COUNT = 10
MAX_LISTING_COUNT = 50

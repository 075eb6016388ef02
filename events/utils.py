import datetime


def normalize_instant(value: datetime.datetime) -> datetime.datetime:
    """
    Return `value` as an aware UTC datetime truncated to whole seconds.
    Occurrence instants are compared and stored with this precision.
    """
    if value.tzinfo is None:
        raise ValueError("Occurrence instants must be timezone-aware")
    return value.astimezone(datetime.UTC).replace(microsecond=0)

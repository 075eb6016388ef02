from .base import *


SECRET_KEY = "test"  # nosec

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    },
}

# Speed up password hashing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Keep expansion tests fast and make truncation easy to trigger
EVENT_SERIES_MAX_OCCURRENCES = 500
EVENT_SERIES_MAX_SPAN_YEARS = 10

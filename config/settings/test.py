from .base import BASE_DIR
from .base import REST_FRAMEWORK as BASE_REST_FRAMEWORK
from .base import *  # noqa

DEBUG = False

# Use a local SQLite database unless a Postgres run is requested explicitly
if DB_ENGINE.lower() != "postgres":  # noqa: F405
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "test_db.sqlite3",
        }
    }

# Plain static storage; the manifest backend needs collectstatic
STORAGES = {
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

IDEMPOTENCY_TTL_HOURS = 24

# Relax throttling for tests to reduce flakiness
REST_FRAMEWORK = {**BASE_REST_FRAMEWORK}
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {
    **BASE_REST_FRAMEWORK.get("DEFAULT_THROTTLE_RATES", {}),
    "user": "1000/min",
    "anon": "1000/min",
    "inventory_write": "1000/min",
    "purchasing": "1000/min",
    "purchasing_write": "1000/min",
}

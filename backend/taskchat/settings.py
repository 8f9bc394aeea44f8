"""
Django settings for the taskchat project.

Secrets come from the environment; a local .env file is loaded first.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-taskchat-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "tasks",
]

MIDDLEWARE = []

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Cache (keyword expansions)
# ---------------------------------------------------------------------------

REDIS_URL = os.getenv("REDIS_URL")

if REDIS_URL:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_URL,
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "taskchat",
        }
    }

AI_CACHE_TTL = int(os.getenv("AI_CACHE_TTL", "86400"))

# ---------------------------------------------------------------------------
# Language models
# ---------------------------------------------------------------------------

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
TASK_CHAT_MODEL = os.getenv("TASK_CHAT_MODEL", "gpt-4o-mini")
TASK_CHAT_EXPANSION_MODEL = os.getenv("TASK_CHAT_EXPANSION_MODEL", "gpt-4o-mini")

# ---------------------------------------------------------------------------
# Engine defaults (see tasks.ai_engine.config.EngineConfig)
# ---------------------------------------------------------------------------

TASK_CHAT_ENGINE = {
    "coefficients": {"relevance": 20, "due_date": 4, "priority": 1, "status": 1},
    "quality_floor": 0.0,
    "min_relevance": 0.0,
    "max_recommendations": 20,
    "sort_spec": ["relevance"],
}

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "{asctime} {levelname} {name}: {message}", "style": "{"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "loggers": {
        "tasks": {
            "handlers": ["console"],
            "level": os.getenv("TASKS_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# bulletin_engine/settings.py: env-driven, sqlite fallback for dev/tests
import os
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"))

# ---------------------------
# Security / Debug
# ---------------------------
SECRET_KEY = (
    os.environ.get("DJANGO_SECRET_KEY")
    or os.environ.get("SECRET_KEY")
    or "fallback-dev-secret-key-please-change"
)


def bool_from_env(key, default=False):
    val = os.environ.get(key)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def int_from_env(key, default):
    val = os.environ.get(key)
    if val is None or not str(val).strip():
        return default
    return int(val)


DEBUG = bool_from_env("DEBUG", default=True)

_env_hosts = os.environ.get("ALLOWED_HOSTS") or os.environ.get("DJANGO_ALLOWED_HOSTS") or ""
if _env_hosts:
    ALLOWED_HOSTS = [h.strip() for h in _env_hosts.split(",") if h.strip()]
else:
    ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

# ---------------------------
# Installed apps
# ---------------------------
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third party
    "rest_framework",

    # Project apps
    "core",
    "academics",
    "bulletins",
    "notifications",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "bulletin_engine.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "bulletin_engine.wsgi.application"

# ---------------------------
# Database
# ---------------------------
DATABASE_URL = os.environ.get("DATABASE_URL")
if DATABASE_URL:
    ssl_require = bool_from_env("DB_SSL", default=not DEBUG)
    DATABASES = {
        "default": dj_database_url.parse(
            DATABASE_URL,
            conn_max_age=int_from_env("DB_CONN_MAX_AGE", 600),
            ssl_require=ssl_require,
        )
    }
else:
    DB_NAME = os.environ.get("DB_NAME")
    DB_USER = os.environ.get("DB_USER")
    DB_PASS = os.environ.get("DB_PASSWORD") or os.environ.get("DB_PASS")
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = os.environ.get("DB_PORT", "5432")

    if DB_NAME and DB_USER:
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.postgresql",
                "NAME": DB_NAME,
                "USER": DB_USER,
                "PASSWORD": DB_PASS or "",
                "HOST": DB_HOST,
                "PORT": DB_PORT,
            }
        }
    else:
        # Fallback sqlite (dev local / tests)
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.sqlite3",
                "NAME": os.path.join(BASE_DIR, "db.sqlite3"),
            }
        }

# ---------------------------
# Cache: holds bulletin document data between approval and publication
# ---------------------------
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "bulletin-engine",
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "fr"
TIME_ZONE = os.environ.get("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = os.environ.get("STATIC_URL", "/static/")
STATIC_ROOT = Path(os.environ.get("STATIC_ROOT", BASE_DIR / "staticfiles"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------
# Email (bulletin notifications)
# ---------------------------
EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.environ.get("EMAIL_HOST", "localhost")
EMAIL_PORT = int_from_env("EMAIL_PORT", 25)
EMAIL_HOST_USER = os.environ.get("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.environ.get("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = bool_from_env("EMAIL_USE_TLS", default=False)

# ---------------------------
# Bulletins
# ---------------------------
# Soumission avec notes manquantes : autorisée en T1/T2, refusée en T3
BULLETINS_ALLOW_GAPS = {
    "T1": bool_from_env("BULLETINS_ALLOW_GAPS_T1", default=True),
    "T2": bool_from_env("BULLETINS_ALLOW_GAPS_T2", default=True),
    "T3": bool_from_env("BULLETINS_ALLOW_GAPS_T3", default=False),
}
BULLETINS_REQUIRE_COMPLETE_FOR_APPROVAL = bool_from_env("BULLETINS_REQUIRE_COMPLETE_FOR_APPROVAL", default=False)
BULLETINS_DOCUMENT_TTL = int_from_env("BULLETINS_DOCUMENT_TTL", 24 * 3600)
BULLETINS_SCHOOL_INFO = {
    "name": os.environ.get("SCHOOL_NAME", ""),
    "address": os.environ.get("SCHOOL_ADDRESS", ""),
    "phone": os.environ.get("SCHOOL_PHONE", ""),
    "email": os.environ.get("SCHOOL_EMAIL", ""),
}

# ---------------------------
# Notifications (SMS / email / WhatsApp / push)
# ---------------------------
NOTIFICATIONS_MAX_WORKERS = int_from_env("NOTIFICATIONS_MAX_WORKERS", 8)
NOTIFICATIONS_SEND_TIMEOUT = int_from_env("NOTIFICATIONS_SEND_TIMEOUT", 15)
NOTIFICATIONS_DEFAULT_LANGUAGE = os.environ.get("NOTIFICATIONS_DEFAULT_LANGUAGE", "fr")
NOTIFICATIONS_DEFAULT_CALLING_CODE = os.environ.get("NOTIFICATIONS_DEFAULT_CALLING_CODE", "229")
NOTIFICATIONS_EMAIL_FROM = os.environ.get("NOTIFICATIONS_EMAIL_FROM", "no-reply@school.local")
NOTIFICATIONS_SMS_BACKEND = os.environ.get("NOTIFICATIONS_SMS_BACKEND", "console")
NOTIFICATIONS_SMS_API_URL = os.environ.get("NOTIFICATIONS_SMS_API_URL", "")
NOTIFICATIONS_SMS_API_KEY = os.environ.get("NOTIFICATIONS_SMS_API_KEY", "")
NOTIFICATIONS_SMS_SENDER_ID = os.environ.get("NOTIFICATIONS_SMS_SENDER_ID", "SCHOOL")
NOTIFICATIONS_WHATSAPP_BACKEND = os.environ.get("NOTIFICATIONS_WHATSAPP_BACKEND", "console")
NOTIFICATIONS_WHATSAPP_API_URL = os.environ.get("NOTIFICATIONS_WHATSAPP_API_URL", "")
NOTIFICATIONS_WHATSAPP_TOKEN = os.environ.get("NOTIFICATIONS_WHATSAPP_TOKEN", "")
NOTIFICATIONS_PUSH_BACKEND = os.environ.get("NOTIFICATIONS_PUSH_BACKEND", "console")
NOTIFICATIONS_PUSH_API_URL = os.environ.get("NOTIFICATIONS_PUSH_API_URL", "")
NOTIFICATIONS_PUSH_SERVER_KEY = os.environ.get("NOTIFICATIONS_PUSH_SERVER_KEY", "")

# ---------------------------
# Logging (console)
# ---------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(levelname)s %(asctime)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "django.request": {"handlers": ["console"], "level": "ERROR", "propagate": False},
        "notifications": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "bulletins": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# config/settings/base.py
from pathlib import Path
import os
from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "unsafe-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",
    "drf_spectacular",

    # Domain apps (modular monolith)
    "civic_core.common.apps.CommonConfig",
    "civic_core.catalog",
    "civic_core.tenants",
    "civic_core.leads",
    "civic_core.documents.apps.DocumentsConfig",
    "civic_core.quotes",
    "civic_core.mandates",
    "civic_core.invoices",
    "civic_core.subscriptions",
    "civic_core.reminders.apps.RemindersConfig",
    "civic_core.notifications",
    "civic_core.audit",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",

    # request_id shared by logs and the error envelope
    "civic_core.common.middleware.RequestIdMiddleware",

    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"

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
    }
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "civic"),
        "USER": os.getenv("DB_USER", "civic"),
        "PASSWORD": os.getenv("DB_PASSWORD", "civic"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "fr-fr"
TIME_ZONE = "Europe/Paris"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "civic_core.common.permissions.BillingStaffPermission",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",

    # Standard error envelope
    "EXCEPTION_HANDLER": "civic_core.common.api.exceptions.api_exception_handler",

    "DEFAULT_PAGINATION_CLASS": "civic_core.common.api.pagination.DefaultPagination",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Civic Billing API",
    "DESCRIPTION": "Leads, quotes, administrative mandates, subscriptions and renewal reminders",
    "VERSION": "0.1.0",
    "COMPONENT_SPLIT_REQUEST": True,
    "SORT_OPERATIONS": True,
    "SORT_OPERATION_PARAMETERS": True,
}

# Email
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = os.getenv("EMAIL_USE_TLS", "0") == "1"
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "facturation@civic.local")

SITE_URL = os.getenv("SITE_URL", "http://localhost:8000")

# Billing engine configuration, loaded by civic_core.common.conf.load_billing_settings()
CIVIC_BILLING = {
    "QUOTE_VALIDITY_DAYS": int(os.getenv("QUOTE_VALIDITY_DAYS", "30")),
    "DEFAULT_TAX_RATE": os.getenv("DEFAULT_TAX_RATE", "20.00"),
    "VAT_APPLICABLE": os.getenv("VAT_APPLICABLE", "1") == "1",
    "VAT_EXEMPTION_NOTICE": "TVA non applicable, art. 293 B du CGI",
    "NUMBER_DIGITS": 5,
    "PAYMENT_TERMS_DAYS": 30,
    "MANDATE_DURATION_MONTHS": 12,
    "GRACE_PERIOD_DAYS": 15,
    "REMINDER_LEVELS": [(1, 60), (2, 30), (3, 15)],
    "REMINDER_MAX_RETRIES": 3,
    "REMINDER_INTERVAL_SECONDS": int(os.getenv("REMINDER_INTERVAL_SECONDS", "3600")),
    "CARD_WEBHOOK_SECRET": os.getenv("CARD_WEBHOOK_SECRET", ""),
    "SIRET_LOOKUP_URL": os.getenv("SIRET_LOOKUP_URL", "https://api.insee.fr/entreprises/sirene/V3.11/siret/{siret}"),
    "SIRET_LOOKUP_TOKEN": os.getenv("SIRET_LOOKUP_TOKEN", ""),
    "SIRET_LOOKUP_TIMEOUT": 5,
    "EMAIL_SENDER": "civic_core.notifications.email.DjangoEmailSender",
    "PDF_RENDERER": "civic_core.documents.pdf.WeasyPrintRenderer",
    "EMITTER": {
        "name": os.getenv("EMITTER_NAME", "Civic Services SAS"),
        "address": os.getenv("EMITTER_ADDRESS", ""),
        "siret": os.getenv("EMITTER_SIRET", ""),
        "iban": os.getenv("EMITTER_IBAN", ""),
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "structured": {
            "format": "[%(asctime)s] %(levelname)s [%(name)s:%(lineno)s] [request_id=%(request_id)s] %(message)s",
        },
    },
    "filters": {
        "request_id": {
            "()": "civic_core.common.middleware.RequestIdLogFilter",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "structured",
            "filters": ["request_id"],
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "civic_core": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

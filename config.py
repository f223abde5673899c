import os
import logging.config

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Runtime settings read from the environment (and .env when present)."""
    ENV = os.getenv("ENV", "development")
    PORT = int(os.getenv("PORT", 8000))

    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME")

    SECRET_KEY = os.getenv("SECRET_KEY") or "change-me-in-production"
    # 7 days
    TOKEN_MAX_AGE = int(os.getenv("TOKEN_MAX_AGE", 7 * 24 * 60 * 60))

    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        }
    },
    "root": {"handlers": ["console"], "level": Config.LOG_LEVEL},
    "loggers": {
        "pymongo": {"level": "WARNING"},
        "urllib3": {"level": "WARNING"},
    },
}


def setup_logging():
    logging.config.dictConfig(LOGGING)

import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "mercado_obras.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-mercado-obras")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    UPLOAD_DIR = os.environ.get("UPLOAD_DIR") or os.path.join(BASE_DIR, "uploads")
    UPLOAD_BASE_URL = os.environ.get("UPLOAD_BASE_URL", "/uploads")
    MAX_ATTACHMENT_BYTES = _int_env("MAX_ATTACHMENT_BYTES", 10 * 1024 * 1024)
    MAX_CONTENT_LENGTH = MAX_ATTACHMENT_BYTES + 1024 * 1024

    CHAT_MAX_MESSAGE_LENGTH = _int_env("CHAT_MAX_MESSAGE_LENGTH", 2000)
    CHAT_POLL_INTERVAL_SECONDS = _int_env("CHAT_POLL_INTERVAL_SECONDS", 5)

    NOTIFY_RETRY_ATTEMPTS = _int_env("NOTIFY_RETRY_ATTEMPTS", 2)
    NOTIFY_RETRY_BACKOFF_MS = _int_env("NOTIFY_RETRY_BACKOFF_MS", 200)

    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = _int_env("MAIL_PORT", 587)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_USE_TLS = _bool_env("MAIL_USE_TLS", True)
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "nao-responda@mercadoobras.com.br")

    EXPIRY_SCHEDULER_ENABLED = _bool_env("EXPIRY_SCHEDULER_ENABLED", True)
    EXPIRY_SCHEDULER_INTERVAL_SECONDS = _int_env("EXPIRY_SCHEDULER_INTERVAL_SECONDS", 900)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-mercado-obras":
            raise RuntimeError("SECRET_KEY insegura para producao.")

import logging
import os

# --- JWT ---
SECRET_KEY = os.getenv("SECRET_KEY", "change_me_pos_secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 720))

# --- KAFKA ---
KAFKA_ENABLED = os.getenv("KAFKA_ENABLED", "1") == "1"
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
ORDER_EVENTS_TOPIC = os.getenv("ORDER_EVENTS_TOPIC", "order_events")

# --- SERVICE URLS (docker-compose service names) ---
USER_SERVICE_URL = os.getenv("USER_SERVICE_URL", "http://user_service:8001")
TABLE_SERVICE_URL = os.getenv("TABLE_SERVICE_URL", "http://table_service:8002")
ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://order_service:8003")
NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL", "http://notification_service:8006")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 10.0))

# Table status sync
TABLE_SYNC_RETRIES = int(os.getenv("TABLE_SYNC_RETRIES", 3))
TABLE_SYNC_BACKOFF = float(os.getenv("TABLE_SYNC_BACKOFF", 0.5))
TABLE_RECONCILE_INTERVAL = float(os.getenv("TABLE_RECONCILE_INTERVAL", 30))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def database_url(service: str, default_db: str) -> str:
    """Resolve the SQLAlchemy URL for a service.

    ``<SERVICE>_DATABASE_URL`` wins; otherwise the MySQL URL is assembled from
    the shared root credentials and the per-service host variable.
    """
    prefix = service.upper()
    explicit = os.getenv(f"{prefix}_DATABASE_URL")
    if explicit:
        return explicit
    user = os.getenv("DB_ROOT_USER", "root")
    password = os.getenv("DB_PASSWORD", "123456")
    host = os.getenv(f"{prefix}_DB_HOST", "db")
    return f"mysql+pymysql://{user}:{password}@{host}/{default_db}"


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


def create_service_engine(url: str):
    # In-memory SQLite must share one connection across threads
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)

from sqlalchemy.orm import declarative_base, sessionmaker

from pos_common.config import database_url
from pos_common.db import create_service_engine

# Falls back to MySQL on the 'db' host
SQLALCHEMY_DATABASE_URL = database_url("order", "order_db")

engine = create_service_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

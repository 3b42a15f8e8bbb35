from sqlalchemy import Boolean, Column, DateTime, Integer, String
from user_service.database import Base
import datetime


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100))
    email = Column(String(100), unique=True, index=True)
    hashed_password = Column(String(200))

    # super-admin / branch-admin / accountant / order-taker / kitchen
    role = Column(String(20), nullable=False)

    branch_id = Column(Integer, nullable=True, index=True)
    # Physical POS device the account logs in from
    terminal = Column(Integer, nullable=True)

    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

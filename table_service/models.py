from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from table_service.database import Base
import datetime

AVAILABLE = "Available"
RUNNING = "Running"
TABLE_STATUSES = (AVAILABLE, RUNNING)


class Hall(Base):
    __tablename__ = "halls"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), index=True)
    branch_id = Column(Integer, index=True, nullable=True)
    terminal = Column(Integer, nullable=True)
    capacity = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    tables = relationship("DiningTable", back_populates="hall", cascade="all, delete-orphan")


class DiningTable(Base):
    __tablename__ = "tables"
    __table_args__ = (UniqueConstraint("hall_id", "table_number", name="uq_hall_table_number"),)

    id = Column(Integer, primary_key=True, index=True)
    hall_id = Column(Integer, ForeignKey("halls.id"), nullable=False)
    table_number = Column(String(20), nullable=False)
    capacity = Column(Integer, default=4)
    status = Column(String(20), default=AVAILABLE, index=True)
    branch_id = Column(Integer, index=True, nullable=True)
    terminal = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    hall = relationship("Hall", back_populates="tables")

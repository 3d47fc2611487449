from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(20), primary_key=True)
    name = Column(String(255), nullable=False)
    event_deleted = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    LoanResults = relationship("LoanResult", back_populates="Event")


class Item(Base):
    __tablename__ = "items"

    item_id = Column(String(13), primary_key=True)
    name = Column(String(255))
    image = Column(String(1000))
    item_deleted = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    LoanResults = relationship("LoanResult", back_populates="Item")


class LoanResult(Base):
    __tablename__ = "result"
    __table_args__ = (
        UniqueConstraint("event_id", "item_id", "start_datetime", name="result_event_item_unique"),
    )

    result_id = Column(Integer, primary_key=True)
    event_id = Column(String(20), ForeignKey("events.event_id"), nullable=False)
    item_id = Column(String(13), ForeignKey("items.item_id"), nullable=False)
    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True))

    Event = relationship("Event", back_populates="LoanResults")
    Item = relationship("Item", back_populates="LoanResults")

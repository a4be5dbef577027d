# backend/user_service/app/models.py

from sqlalchemy import JSON, BigInteger, Column, DateTime, Float, String
from sqlalchemy.sql import func

from .db import Base


class Document(Base):
    """
    One stored document (customer, user, order, session) addressed by its key.
    `expires_at` is an epoch timestamp; a row past it is treated as absent.
    """

    __tablename__ = "documents"

    key = Column(String(255), primary_key=True)
    doc_type = Column(String(50), index=True, nullable=True)
    body = Column(JSON, nullable=False)
    expires_at = Column(Float, nullable=True, index=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Document(key='{self.key}', type='{self.doc_type}', expires_at={self.expires_at})>"


class Counter(Base):
    __tablename__ = "counters"

    name = Column(String(255), primary_key=True)
    value = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<Counter(name='{self.name}', value={self.value})>"

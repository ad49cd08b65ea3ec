"""
Engagement event rows.

A successful PropertyContactEvent is what marks a favorite as contacted.
"""
from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid

from app.db.base import Base


class PropertyView(Base):
    __tablename__ = "property_views"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(UUID(as_uuid=True), ForeignKey('properties.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    session_id = Column(String(100), nullable=True)
    source = Column(String(50), nullable=True)  # lista, mapa, favoritos
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PropertyContactEvent(Base):
    __tablename__ = "property_contact_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(UUID(as_uuid=True), ForeignKey('properties.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    session_id = Column(String(100), nullable=True)
    contact_method = Column(String(20), nullable=False)  # whatsapp, phone, email
    phone_number = Column(String(50), nullable=True)
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)
    source = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_contact_events_user_property', user_id, property_id),
    )

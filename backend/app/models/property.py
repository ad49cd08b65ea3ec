"""
Property model - a rental listing published by a landlord.
Only `active` listings are visible to discovery.
"""
from sqlalchemy import (
    Column, String, Numeric, DateTime, Boolean, Text, Integer, Float, Index, ForeignKey,
    CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, ARRAY
from sqlalchemy import event
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from geoalchemy2 import Geography
from geoalchemy2.shape import from_shape
from shapely.geometry import Point
import uuid

from app.db.base import Base


class Property(Base):
    """Rental listing - the main entity for discovery."""
    __tablename__ = "properties"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    landlord_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Listing
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)  # apartment, house, room, office
    status = Column(String(20), default='active', nullable=False)  # active, rented, draft
    featured = Column(Boolean, default=False, nullable=False)

    # Location
    address = Column(String(500), nullable=True)
    neighborhood = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location = Column(Geography(geometry_type='POINT', srid=4326), nullable=True)

    # Price
    price_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default='HNL', nullable=False)
    price_period = Column(String(10), default='month', nullable=False)

    # Layout
    bedrooms = Column(Integer, default=0, nullable=False)
    bathrooms = Column(Integer, default=0, nullable=False)
    area_sqm = Column(Numeric(10, 2), nullable=True)
    amenities = Column(ARRAY(String), default=list, nullable=False)  # lowercase tokens

    # Engagement counters (denormalized, adjusted by atomic deltas)
    view_count = Column(Integer, default=0, nullable=False)
    favorite_count = Column(Integer, default=0, nullable=False)
    contact_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    landlord = relationship("User", back_populates="properties")
    images = relationship(
        "PropertyImage",
        back_populates="property",
        cascade="all, delete-orphan",
        order_by="PropertyImage.display_order",
    )
    favorites = relationship("PropertyFavorite", back_populates="property", cascade="all, delete-orphan")

    # Indexes
    __table_args__ = (
        Index('idx_properties_location', location, postgresql_using='gist'),
        Index('idx_properties_status', status),
        Index('idx_properties_price', price_amount),
        Index('idx_properties_created_at', created_at),
        CheckConstraint('view_count >= 0', name='ck_properties_view_count'),
        CheckConstraint('favorite_count >= 0', name='ck_properties_favorite_count'),
        CheckConstraint('contact_count >= 0', name='ck_properties_contact_count'),
    )


class PropertyImage(Base):
    """Listing photo. Lowest display_order is shown first."""
    __tablename__ = "property_images"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(UUID(as_uuid=True), ForeignKey('properties.id', ondelete='CASCADE'), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    alt_text = Column(String(255), nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    property = relationship("Property", back_populates="images")


@event.listens_for(Property, "before_insert")
@event.listens_for(Property, "before_update")
def sync_location(mapper, connection, target):
    """Keep the geography column in step with latitude/longitude."""
    if target.latitude is not None and target.longitude is not None:
        target.location = from_shape(Point(target.longitude, target.latitude), srid=4326)
    else:
        target.location = None

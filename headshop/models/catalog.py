"""
Catalog Models

Products, subscription plans and the shipping profiles that give them a
weight and box size for freight quotes.
"""
from sqlalchemy import Column, String, Text, Boolean, Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from headshop.database import db
from headshop.models.base import new_id, utcnow, isoformat


class ShippingProfile(db.Model):
    __tablename__ = "shipping_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    weight_kg = Column(Numeric(6, 3), nullable=False)
    width_cm = Column(Integer, nullable=False)
    height_cm = Column(Integer, nullable=False)
    length_cm = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "weightKg": float(self.weight_kg),
            "widthCm": self.width_cm,
            "heightCm": self.height_cm,
            "lengthCm": self.length_cm,
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class Product(db.Model):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    shipping_profile_id = Column(String(36), ForeignKey("shipping_profiles.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    shipping_profile = relationship("ShippingProfile")


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    billing_cycle = Column(String(16), nullable=False, default="MONTHLY")
    active = Column(Boolean, nullable=False, default=True)
    shipping_profile_id = Column(String(36), ForeignKey("shipping_profiles.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    shipping_profile = relationship("ShippingProfile")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price": float(self.price),
            "billingCycle": self.billing_cycle,
            "active": self.active,
        }

"""
Shipping profile repository.

Quotes work on `PackageProfile` values rather than ORM rows so that a
profile combined from several products can be priced like a stored one.
"""
from dataclasses import dataclass
from typing import List, Optional

from headshop.infra.db import db
from headshop.models import Product, ShippingProfile, SubscriptionPlan


class ProfileNotFound(Exception):
    pass


class ProfileInUse(Exception):
    def __init__(self, products: int, plans: int):
        super().__init__(
            f"Não é possível excluir o perfil pois ele está vinculado a "
            f"{products} produto(s) e {plans} plano(s)"
        )
        self.products = products
        self.plans = plans


@dataclass(frozen=True)
class PackageProfile:
    id: str
    name: str
    weight_kg: float
    width_cm: int
    height_cm: int
    length_cm: int

    @classmethod
    def from_model(cls, profile: ShippingProfile) -> "PackageProfile":
        return cls(
            id=profile.id,
            name=profile.name,
            weight_kg=float(profile.weight_kg),
            width_cm=profile.width_cm,
            height_cm=profile.height_cm,
            length_cm=profile.length_cm,
        )


DEFAULT_PROFILE = PackageProfile(
    id="default",
    name="Perfil Padrão",
    weight_kg=0.5,
    width_cm=20,
    height_cm=10,
    length_cm=30,
)


def get_profile_by_id(profile_id: str) -> Optional[ShippingProfile]:
    return db.session.get(ShippingProfile, profile_id)


def get_profile_from_products(product_ids: List[str]) -> Optional[PackageProfile]:
    """Combine the profiles of several products: summed weight, largest footprint, stacked height."""
    if not product_ids:
        return None

    products = (
        Product.query.filter(Product.id.in_(product_ids))
        .filter(Product.shipping_profile_id.isnot(None))
        .all()
    )
    profiles = [p.shipping_profile for p in products if p.shipping_profile is not None]
    if not profiles:
        return None

    return PackageProfile(
        id="combined",
        name="Perfil combinado",
        weight_kg=sum(float(p.weight_kg) for p in profiles),
        width_cm=max(p.width_cm for p in profiles),
        height_cm=sum(p.height_cm for p in profiles),
        length_cm=max(p.length_cm for p in profiles),
    )


def get_profile_from_plan(plan_id: str) -> Optional[PackageProfile]:
    plan = db.session.get(SubscriptionPlan, plan_id)
    if plan is None or plan.shipping_profile is None:
        return None
    return PackageProfile.from_model(plan.shipping_profile)


def list_profiles(active_only: bool = False) -> List[ShippingProfile]:
    query = ShippingProfile.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(ShippingProfile.name.asc()).all()


def create_profile(name: str, weight_kg, width_cm: int, height_cm: int, length_cm: int,
                   is_active: bool = True) -> ShippingProfile:
    profile = ShippingProfile(
        name=name,
        weight_kg=weight_kg,
        width_cm=width_cm,
        height_cm=height_cm,
        length_cm=length_cm,
        is_active=is_active,
    )
    db.session.add(profile)
    db.session.commit()
    return profile


def update_profile(profile_id: str, **changes) -> ShippingProfile:
    """Apply the given fields; keys left out (or None) are untouched."""
    profile = get_profile_by_id(profile_id)
    if profile is None:
        raise ProfileNotFound(profile_id)
    for field in ("name", "weight_kg", "width_cm", "height_cm", "length_cm", "is_active"):
        if changes.get(field) is not None:
            setattr(profile, field, changes[field])
    db.session.commit()
    return profile


def toggle_profile_active(profile_id: str) -> ShippingProfile:
    profile = get_profile_by_id(profile_id)
    if profile is None:
        raise ProfileNotFound(profile_id)
    profile.is_active = not profile.is_active
    db.session.commit()
    return profile


def delete_profile(profile_id: str) -> None:
    """Delete an unused profile; profiles linked to products or plans are kept."""
    profile = get_profile_by_id(profile_id)
    if profile is None:
        raise ProfileNotFound(profile_id)
    products = Product.query.filter_by(shipping_profile_id=profile_id).count()
    plans = SubscriptionPlan.query.filter_by(shipping_profile_id=profile_id).count()
    if products or plans:
        raise ProfileInUse(products, plans)
    db.session.delete(profile)
    db.session.commit()

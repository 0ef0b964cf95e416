from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from headshop.database import db
from headshop.models.base import new_id, utcnow, isoformat


class UserStatus:
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"


class User(db.Model):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    whatsapp = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE)
    role = Column(String(16), nullable=False, default="USER")  # USER, ADMIN
    created_at = Column(DateTime, nullable=False, default=utcnow)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_blocked(self) -> bool:
        return self.status == UserStatus.BLOCKED

    def split_name(self):
        """Return (first_name, last_name) as the gateway payer expects."""
        parts = (self.full_name or "").split(" ")
        return parts[0], " ".join(parts[1:])

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "status": self.status,
            "role": self.role,
            "createdAt": isoformat(self.created_at),
        }


class Address(db.Model):
    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    street = Column(String(255), nullable=False)
    number = Column(String(32), nullable=False)
    complement = Column(String(255), nullable=True)
    neighborhood = Column(String(128), nullable=False)
    city = Column(String(128), nullable=False)
    state = Column(String(2), nullable=False)
    zip_code = Column(String(9), nullable=False)
    country = Column(String(2), nullable=False, default="BR")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="addresses")

    def snapshot(self, user: User) -> dict:
        """Copy of the address frozen into the order at checkout time."""
        return {
            "fullName": user.full_name,
            "whatsapp": user.whatsapp or "",
            "street": self.street,
            "number": self.number,
            "complement": self.complement,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "country": self.country,
        }

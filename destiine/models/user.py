"""
Traveller accounts

The booking core reads id, email, display name and the payment customer
reference; everything else belongs to the auth routes.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from destiine.core.utils import utcnow
from destiine.core.database import Base


class User(Base):
    """
    A traveller.

    customer_id is the payment processor's customer reference, set on the
    first payment attempt and reused afterwards.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    customer_id = Column(String(255), nullable=True, index=True)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    reservations = relationship("Reservation", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email!r})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def record_login(self) -> None:
        self.last_login_at = utcnow()

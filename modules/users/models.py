from sqlalchemy import Column, String, Enum as SQLEnum
import enum
from database.base import Base
from database.mixins import UUIDMixin, TimestampMixin


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    FARMER = "farmer"
    DRIVER = "driver"
    CONSUMER = "consumer"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class User(Base, UUIDMixin, TimestampMixin):
    """Marketplace account. Owned by the auth/user modules; the referral program only reads it."""
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(SQLEnum(UserRole, values_callable=lambda e: [m.value for m in e], name="userrole"),
                  nullable=False, default=UserRole.CONSUMER, index=True)
    status = Column(SQLEnum(UserStatus, values_callable=lambda e: [m.value for m in e], name="userstatus"),
                    nullable=False, default=UserStatus.ACTIVE, index=True)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Unknown User"

    def __repr__(self):
        return f"<User {self.email} ({self.role.value if self.role else None})>"

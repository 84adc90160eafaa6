from sqlalchemy import Column, String, Numeric, ForeignKey, Enum as SQLEnum, Boolean
from sqlalchemy.orm import relationship
import enum
from decimal import Decimal
from database.base import Base
from database.mixins import UUIDMixin, TimestampMixin, UUID


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def _enum_values(e):
    return [m.value for m in e]


class Order(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "orders"

    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(UUID(), ForeignKey('users.id'), nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus, values_callable=_enum_values, name="orderstatus"),
                    default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(SQLEnum(PaymentStatus, values_callable=_enum_values, name="orderpaymentstatus"),
                            default=PaymentStatus.PENDING, nullable=False, index=True)

    subtotal = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    # Set together with the free-delivery decrement, in the same transaction
    free_delivery_applied = Column(Boolean, default=False, nullable=False)
    free_delivery_source = Column(String(30), nullable=True)  # referral

    user = relationship("User", foreign_keys=[user_id])

    def __repr__(self):
        return f"<Order {self.order_number}>"

from sqlalchemy import Column, Integer, String, JSON, Numeric, TIMESTAMP
from sqlalchemy.sql import func
from common.database import Base

STATUS_PENDING = "pending"
STATUS_PAID = "paid"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    items = Column(JSON, nullable=False) # Opaque list of {name, quantity, price}
    total_amount = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    status = Column(String(50), nullable=False, default=STATUS_PENDING)
    payment_id = Column(Integer, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    def __repr__(self):
        return f"<Order(id={self.id}, user_id={self.user_id}, status='{self.status}', payment_id={self.payment_id})>"

from sqlalchemy import Column, Integer, String, Numeric, TIMESTAMP
from sqlalchemy.sql import func
from common.database import Base

STATUS_COMPLETED = "completed"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # One payment per order: a second insert for the same order hits the constraint
    order_id = Column(Integer, nullable=False, unique=True, index=True)
    user_id = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    payment_method = Column(String(50), nullable=False, default="credit_card")
    status = Column(String(50), nullable=False, default=STATUS_COMPLETED)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, amount={self.amount}, status='{self.status}')>"

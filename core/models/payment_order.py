from .base import Base, Column, String, Integer, DateTime, Numeric, ForeignKey, relationship, ORDER_STATUS


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("membership_products.id"), index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), index=True, nullable=False, default=ORDER_STATUS.PENDING)
    alipay_trade_no = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    user = relationship("User", lazy="joined")
    product = relationship("MembershipProduct", lazy="joined")

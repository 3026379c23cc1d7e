from .base import Base, Column, String, Integer, DateTime, Numeric, Text, PRODUCT_TYPE


class MembershipProduct(Base):
    __tablename__ = "membership_products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    duration_days = Column(Integer, nullable=False, default=30)  # 0 表示不过期
    type = Column(String(20), nullable=False, default=PRODUCT_TYPE.PREMIUM)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

from .base import Base, Column, String, Integer, DateTime, Boolean, Text


class PaymentSettings(Base):
    """支付宝凭据，全表至多一行。"""

    __tablename__ = "payment_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alipay_app_id = Column(String(64), default="")
    alipay_private_key = Column(Text, default="")
    alipay_public_key = Column(Text, default="")
    alipay_gateway_url = Column(String(255), default="https://openapi.alipay.com/gateway.do")
    is_sandbox = Column(Boolean, default=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

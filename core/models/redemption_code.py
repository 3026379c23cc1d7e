from .base import Base, Column, String, Integer, DateTime, Boolean, ForeignKey, relationship


class RedemptionCode(Base):
    __tablename__ = "redemption_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(16), unique=True, index=True, nullable=False)
    duration_days = Column(Integer, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False, index=True)
    used_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime)

    used_by_user = relationship("User", lazy="joined")

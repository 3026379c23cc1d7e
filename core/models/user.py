from .base import Base, Column, String, Integer, DateTime, Boolean, ROLE


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), default="")
    nickname = Column(String(50), default="")
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=ROLE.NORMAL, index=True, nullable=False)  # NORMAL/PREMIUM/LIFETIME/ADMIN
    premium_expiry_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def verify_password(self, password: str) -> bool:
        from core.auth import pwd_context
        return pwd_context.verify(password, self.password_hash)

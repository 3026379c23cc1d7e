from sqlalchemy import (  # noqa: F401
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship  # noqa: F401

Base = declarative_base()


class ROLE:
    NORMAL = "NORMAL"
    PREMIUM = "PREMIUM"
    LIFETIME = "LIFETIME"
    ADMIN = "ADMIN"


class ORDER_STATUS:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PRODUCT_TYPE:
    PREMIUM = "PREMIUM"
    LIFETIME = "LIFETIME"

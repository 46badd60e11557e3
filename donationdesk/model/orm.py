from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    String,
    Float,
    Numeric,
    Text,
)


Base = declarative_base()

PAYMENT_OFFLINE = "offline"
PAYMENT_ONLINE = "online"


# ----------------------------
# ORM models
# ----------------------------
class Donation(Base):
    __tablename__ = "donations"
    id = Column(String, primary_key=True)
    full_name = Column(String, nullable=False, default="")
    address = Column(String, nullable=False, default="")
    mobile = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    amount_inr = Column(Numeric(12, 2), nullable=True)  # rupees
    comment = Column(Text, nullable=False, default="")

    # offline | online
    payment_method = Column(String, nullable=False)
    created_at = Column(Float, nullable=False, index=True)

    # set only for verified online payments
    provider_order_id = Column(String, nullable=True)
    # one donation per provider payment, replays hit the unique index
    provider_payment_id = Column(String, nullable=True, unique=True)


class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(String, primary_key=True)
    # not unique: signup never rejected duplicates, login takes the oldest
    username = Column(String, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)

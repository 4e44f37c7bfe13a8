from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)


Base = declarative_base()

# sqlite only autoincrements INTEGER PRIMARY KEY
RowId = BigInteger().with_variant(Integer(), "sqlite")

METHOD_CASH = "cash"
METHOD_ONLINE = "online"
METHODS = (METHOD_CASH, METHOD_ONLINE)

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_EXPIRED = "expired"

ITEM_EXPENSE = "expense"
ITEM_INCOME = "income"
ITEM_TYPES = (ITEM_EXPENSE, ITEM_INCOME)


# ----------------------------
# ORM models
# ----------------------------
class Contribution(Base):
    __tablename__ = "contributions"
    id = Column(RowId, primary_key=True, autoincrement=True)
    contributor = Column(String, nullable=False)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    # cash | online
    method = Column(String, nullable=False)
    # pending | success | expired
    status = Column(String, nullable=False, default=STATUS_PENDING)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_contributions_created_at", "created_at"),
    )


class Event(Base):
    __tablename__ = "events"
    id = Column(RowId, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)


class PlanningItem(Base):
    __tablename__ = "planning"
    id = Column(RowId, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    # expense | income
    type = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)

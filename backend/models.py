from sqlalchemy import Column, Integer, String, Text, Date, DateTime, DECIMAL
from database import Base
from datetime import datetime, timezone


class Expense(Base):
    __tablename__ = "expenses"
    # Keep SQLite from handing out ids of deleted rows again
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    idempotency_key = Column(String(255), unique=True, nullable=True, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)   # Never use float for money
    category = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<Expense id={self.id} date={self.date} category={self.category!r} amount={self.amount}>"

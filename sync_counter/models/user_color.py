from sqlalchemy import BigInteger, Column, String

from sync_counter.database.base import Base


class UserColor(Base):
    __tablename__ = "user_colors"

    username = Column(String, primary_key=True, index=True)
    color = Column(String(7), unique=True, nullable=False)  # #RRGGBB
    last_updated = Column(BigInteger, nullable=False)

from sqlalchemy import BigInteger, Column, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import TIMESTAMP

from sync_counter.database.base import Base, JSONDocument


class Counter(Base):
    __tablename__ = "counters"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    value = Column(BigInteger, nullable=False, default=0)
    daily_goal = Column(Integer, nullable=False, default=0)  # 0 = no goal
    daily_count = Column(Integer, nullable=False, default=0)
    users = Column(JSONDocument, nullable=False, default=dict)  # {"Prabh": 12}
    history = Column(JSONDocument, nullable=False, default=dict)  # {"2024-05-01": {"users": {}, "total": 0, "day": "Wednesday"}}
    image_url = Column(Text, nullable=True)
    image_key = Column(String, nullable=True)
    last_updated = Column(BigInteger, nullable=False)  # epoch millis, last-write-wins marker
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

from sqlalchemy import Column, String, DateTime, Time
from sqlalchemy.sql import func

from ..core.database import Base

class Practitioner(Base):
    __tablename__ = "practitioners"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(200), nullable=False, default="")

    # Daily working window
    work_start = Column(Time, nullable=False)
    work_end = Column(Time, nullable=False)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Practitioner(id='{self.id}', name='{self.name}', hours='{self.work_start}-{self.work_end}')>"

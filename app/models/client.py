from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from ..core.database import Base

class Client(Base):
    __tablename__ = "clients"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(200), nullable=False, default="")

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Client(id='{self.id}', name='{self.name}')>"

from sqlalchemy import Column, Integer, BigInteger, String, JSON, ForeignKey
from sqlalchemy.orm import relationship
from db import Base


class GroupMeta(Base):
    """
    Access-control half of a group: who may read or write it.
    """
    __tablename__ = "group_meta"

    id = Column(String(40), primary_key=True)
    password_hash = Column(String(64), nullable=False)  # sha256 hex
    created_at = Column(BigInteger, nullable=False)     # epoch millis

    data = relationship("GroupData", uselist=False, back_populates="meta", cascade="all, delete-orphan")


class GroupData(Base):
    """
    Versioned payload half of a group. ``version`` only ever moves up by one,
    through the conditional update in group_service.update_group.
    """
    __tablename__ = "group_data"

    id = Column(String(40), ForeignKey("group_meta.id"), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(BigInteger, nullable=False)     # epoch millis
    payload = Column(JSON, nullable=True)               # plaintext subset or encrypted envelope

    meta = relationship("GroupMeta", back_populates="data")

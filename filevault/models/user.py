from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from filevault.models.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    # Hash written by the login/registration service, never read here
    password = Column(String(255), nullable=False)

    # One user → many files
    files = relationship("FileMeta", back_populates="owner")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

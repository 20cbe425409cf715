from sqlalchemy import Column, Integer, String
from db.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), unique=True, index=True, nullable=True)
    email = Column(String(255), unique=True, nullable=True)
    role = Column(String(50), default="student")  # student / admin

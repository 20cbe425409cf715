from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from db.database import Base

# Written by the commerce side; the exam engine only reads it and bumps the used-counters.
class MembershipGrant(Base):
    __tablename__ = "membership_grants"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_name = Column(String(150), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)

    allow_tryout = Column(Boolean, nullable=False, default=True)
    allow_practice = Column(Boolean, nullable=False, default=True)
    allow_cermat = Column(Boolean, nullable=False, default=True)

    # quota 0 / null = unlimited
    tryout_quota = Column(Integer, nullable=True)
    tryout_used = Column(Integer, nullable=False, default=0)
    practice_quota = Column(Integer, nullable=True)
    practice_used = Column(Integer, nullable=False, default=0)

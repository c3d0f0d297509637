"""
Clarity ingestion bookkeeping — visit counts per URL per day, daily request quota.
"""
from sqlalchemy import Column, Integer, Text, Date, DateTime, UniqueConstraint

from leadtrack.database import Base, local_now


class ClarityVisit(Base):
    __tablename__ = 'clarity_visits'
    __table_args__ = (
        UniqueConstraint('url', 'collected_on', name='uq_clarity_visits_url_day'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=False)
    identifier = Column(Text, nullable=True)  # landing-page variant parsed from the URL
    sessions = Column(Integer, nullable=False, default=0)
    unique_users = Column(Integer, nullable=False, default=0)
    collected_on = Column(Date, nullable=False)
    created_at = Column(DateTime, default=local_now)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now)


class ClarityRequestLog(Base):
    __tablename__ = 'clarity_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(Date, nullable=False, unique=True)
    requests_made = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now)

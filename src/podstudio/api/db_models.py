from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Job(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="processing", index=True)
    type = Column(String, nullable=False)
    prompt = Column(Text, nullable=True)
    user_id = Column(String, nullable=True)
    external_job_id = Column(String, nullable=True)
    result_url = Column(String, nullable=True)
    options = Column(Text, nullable=True)  # JSON document, merged on update
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)


class Asset(Base):
    __tablename__ = "assets"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    storage_key = Column(String, nullable=False, unique=True)
    external_url = Column(String, nullable=True)
    size = Column(Integer, default=0)
    extension = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

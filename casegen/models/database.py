from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, JSON, Numeric, Float, ForeignKey
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from casegen.models.schemas import GenerationMode, GenerationStatus

Base = declarative_base()


class ProjectModel(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    project_key = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)
    first_generated_at = Column(DateTime(timezone=True), nullable=True)
    last_generated_at = Column(DateTime(timezone=True), nullable=True)
    total_generations = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Project(id={self.id}, key='{self.project_key}', total={self.total_generations})>"


class GenerationModel(Base):
    __tablename__ = "generations"

    id = Column(Integer, primary_key=True, index=True)
    issue_key = Column(String(50), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, index=True)
    mode = Column(Enum(GenerationMode), default=GenerationMode.MANUAL)
    status = Column(Enum(GenerationStatus), default=GenerationStatus.RUNNING, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    generation_time_seconds = Column(Float, nullable=True)
    cost = Column(Numeric(14, 8, asdecimal=True), nullable=True)
    # {"prompt_tokens": int, "completion_tokens": int, "total_tokens": int}
    token_usage = Column(JSON, nullable=True)
    content = Column(Text, nullable=True)
    filename = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    # Ledger of ContentVersion dicts, oldest first
    versions = Column(JSON, nullable=False, default=list)
    current_version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Generation(id={self.id}, issue_key='{self.issue_key}', status='{self.status}')>"

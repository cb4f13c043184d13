"""
Analysis job and per-region detail models.
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, Float, Text, Uuid, JSON, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from veriluxe.core.database import Base


class AnalysisVisibility(str, Enum):
    """Who besides the owner may view an analysis."""
    PRIVATE = "private"
    PUBLIC = "public"


class Analysis(Base):
    """
    One uploaded source image under analysis.

    ai_confidence / ai_result_text are the run aggregate. They stay null until
    a pipeline run completes and are only ever written by the orchestrator's
    final summary step, in a single update.
    """
    __tablename__ = "analysis"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    # Source image
    image_path = Column(String(512), nullable=False)  # Object key: {user_id}/{timestamp}.{ext}
    image_url = Column(Text, nullable=False)
    visibility = Column(SQLEnum(AnalysisVisibility), nullable=False, default=AnalysisVisibility.PRIVATE, index=True)

    # Aggregate (write-once per run)
    ai_confidence = Column(Float, nullable=True)
    ai_result_text = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="analyses")
    details = relationship(
        "AnalysisDetail",
        back_populates="analysis",
        cascade="all, delete-orphan",
        order_by="AnalysisDetail.created_at",
    )

    def __repr__(self):
        return f"<Analysis {self.id} ({self.visibility})>"


class AnalysisDetail(Base):
    """Persisted result for one analyzed sub-region. Never updated after insert."""
    __tablename__ = "analysis_detail"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    analysis_id = Column(Uuid(as_uuid=True), ForeignKey('analysis.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    image_url = Column(Text, nullable=False)
    ai_confidence = Column(Float, nullable=True)

    # {type, description, confidence, brand, authenticity, translation, segmentInfo}
    ai_result = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    analysis = relationship("Analysis", back_populates="details")

    __table_args__ = (
        Index('ix_analysis_detail_analysis_created', 'analysis_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AnalysisDetail {self.id} ({self.ai_confidence})>"

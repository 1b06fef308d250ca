"""
Stored competitor analysis runs.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from ..clock import utcnow
from ..database import Base


class AnalysisResult(Base):
    __tablename__ = "analysis_results"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(String(100), nullable=True, index=True)
    result_type = Column(String(50), default="competitor_analysis")
    input_data = Column(JSON, default=dict)
    competitor_analysis = Column(JSON, default=dict)
    ai_metadata = Column(JSON, default=dict)
    status = Column(String(20), default="completed")  # completed, failed
    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="analysis_results")

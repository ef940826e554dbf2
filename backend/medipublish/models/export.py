# backend/medipublish/models/export.py

from sqlalchemy import Column, String, Text, TIMESTAMP

from medipublish.database import Base


class TranscriptExport(Base):
    __tablename__ = "cme_transcript_export"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    format = Column(String(8), nullable=False)
    state_board = Column(String(32))
    file_path = Column(Text, nullable=False)
    content_type = Column(String(64), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

# backend/medipublish/services/export.py

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import csv
import io
import logging
import uuid
import xml.etree.ElementTree as ET

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.config import settings
from medipublish.errors import NotFoundError, StorageError, UnsupportedFormat
from medipublish.models.export import TranscriptExport
from medipublish.schemas.cme import ExportOut, Transcript
from medipublish.services.transcript import get_transcript

logger = logging.getLogger(__name__)

# format -> (content type, file extension)
SUPPORTED_FORMATS: Dict[str, Tuple[str, str]] = {
    "PDF": ("application/pdf", "pdf"),
    "CSV": ("text/csv", "csv"),
    "XML": ("application/xml", "xml"),
}

CSV_COLUMNS = [
    "Activity ID",
    "Activity Title",
    "Specialty",
    "Credit Type",
    "Completion Date",
    "Score",
    "Credits",
    "Certificate ID",
]


@dataclass(frozen=True)
class BoardLayout:
    title: str
    date_format: str = "%Y-%m-%d"


DEFAULT_LAYOUT = BoardLayout(title="CME Transcript")

STATE_BOARD_LAYOUTS: Dict[str, BoardLayout] = {
    "CA": BoardLayout("Medical Board of California - CME Transcript", "%m/%d/%Y"),
    "NY": BoardLayout("New York State Board for Medicine - CME Transcript", "%m/%d/%Y"),
    "TX": BoardLayout("Texas Medical Board - CME Transcript", "%m/%d/%Y"),
    "FL": BoardLayout("Florida Board of Medicine - CME Transcript", "%m/%d/%Y"),
}


def layout_for(state_board: Optional[str]) -> BoardLayout:
    if not state_board:
        return DEFAULT_LAYOUT
    code = state_board.strip().upper()
    return STATE_BOARD_LAYOUTS.get(code) or BoardLayout(title=f"{code} State Medical Board - CME Transcript")


def normalize_format(fmt: Optional[str]) -> str:
    code = (fmt or "").strip().upper()
    if code not in SUPPORTED_FORMATS:
        raise UnsupportedFormat("Invalid format. Must be PDF, CSV, or XML")
    return code


# ---------------------------------------------------------
# Rendering
# ---------------------------------------------------------
class TranscriptRenderer:
    """Turns a transcript into document bytes. Same data for every board."""

    def render(self, transcript: Transcript, fmt: str, layout: BoardLayout) -> bytes:
        if fmt == "CSV":
            return self.render_csv(transcript, layout)
        if fmt == "XML":
            return self.render_xml(transcript, layout)
        if fmt == "PDF":
            return self.render_pdf(transcript, layout)
        raise UnsupportedFormat(f"Invalid format: {fmt}")

    def _rows(self, transcript: Transcript, layout: BoardLayout) -> List[List[str]]:
        return [
            [
                str(c.activity_id),
                c.activity_title,
                c.specialty,
                c.credit_type,
                c.completed_at.strftime(layout.date_format),
                str(c.score),
                f"{c.credits_earned:.2f}",
                c.certificate_id,
            ]
            for c in transcript.completions
        ]

    def render_csv(self, transcript: Transcript, layout: BoardLayout) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_COLUMNS)
        writer.writerows(self._rows(transcript, layout))
        return buffer.getvalue().encode("utf-8")

    def render_xml(self, transcript: Transcript, layout: BoardLayout) -> bytes:
        root = ET.Element("cmeTranscript", {"userId": transcript.user_id})
        ET.SubElement(root, "title").text = layout.title
        ET.SubElement(root, "totalCredits").text = f"{transcript.total_credits:.2f}"

        by_specialty = ET.SubElement(root, "creditsBySpecialty")
        for name, credits in transcript.credits_by_specialty.items():
            ET.SubElement(by_specialty, "specialty", {"name": name}).text = f"{credits:.2f}"

        completions = ET.SubElement(root, "completions")
        for c in transcript.completions:
            node = ET.SubElement(
                completions,
                "completion",
                {"activityId": str(c.activity_id), "certificateId": c.certificate_id},
            )
            ET.SubElement(node, "title").text = c.activity_title
            ET.SubElement(node, "specialty").text = c.specialty
            ET.SubElement(node, "creditType").text = c.credit_type
            ET.SubElement(node, "completionDate").text = c.completed_at.strftime(layout.date_format)
            ET.SubElement(node, "score").text = str(c.score)
            ET.SubElement(node, "credits").text = f"{c.credits_earned:.2f}"

        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    def render_pdf(self, transcript: Transcript, layout: BoardLayout) -> bytes:
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=letter)
        _, height = letter
        margin = 72
        y = height - margin

        pdf.setTitle(layout.title)
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(margin, y, layout.title)
        y -= 22

        pdf.setFont("Helvetica", 10)
        lines = [
            f"Learner: {transcript.user_id}",
            f"Total credits: {transcript.total_credits:.2f}",
            "",
        ]
        for row in self._rows(transcript, layout):
            _, title, specialty, credit_type, completed, score, credits, cert = row
            lines.append(f"{completed}  {title} ({specialty})")
            lines.append(f"    {credits} {credit_type} credits, score {score}%, certificate {cert}")

        for line in lines:
            if y < margin:
                pdf.showPage()
                pdf.setFont("Helvetica", 10)
                y = height - margin
            pdf.drawString(margin, y, line)
            y -= 14

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()


# ---------------------------------------------------------
# Storage
# ---------------------------------------------------------
class FileExportStore:
    """Keeps rendered exports on local disk under base_dir."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def save(self, filename: str, content: bytes) -> Path:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self.base_dir / filename
        path.write_bytes(content)
        return path


def download_url(export_id: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.BACKEND_BASE_URL).rstrip("/")
    return f"{base}/cme/exports/{export_id}"


def export_transcript(
    db: Session,
    user_id: str,
    fmt: str,
    state_board: Optional[str] = None,
    *,
    renderer: Optional[TranscriptRenderer] = None,
    store: Optional[FileExportStore] = None,
    base_url: Optional[str] = None,
) -> ExportOut:
    """Render the user's transcript and return a fetchable artifact reference."""
    fmt = normalize_format(fmt)
    board = state_board.strip().upper() if state_board and state_board.strip() else None
    renderer = renderer or TranscriptRenderer()
    store = store or FileExportStore(settings.EXPORT_DIR)

    transcript = get_transcript(db, user_id)
    content = renderer.render(transcript, fmt, layout_for(board))

    content_type, extension = SUPPORTED_FORMATS[fmt]
    export_id = uuid.uuid4().hex
    try:
        path = store.save(f"{export_id}.{extension}", content)
    except OSError as exc:
        logger.error("[CME_EXPORT] Could not write export %s: %s", export_id, exc)
        raise StorageError("Could not store transcript export") from exc

    row = TranscriptExport(
        id=export_id,
        user_id=user_id,
        format=fmt,
        state_board=board,
        file_path=str(path),
        content_type=content_type,
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        # No row points at the file, so nothing could ever serve it
        path.unlink(missing_ok=True)
        logger.error("[CME_EXPORT] Could not record export %s: %s", export_id, exc)
        raise StorageError("Could not record transcript export") from exc

    logger.info(
        "[CME_EXPORT] user=%s format=%s board=%s -> %s (%d bytes)",
        user_id,
        fmt,
        board,
        export_id,
        len(content),
    )

    return ExportOut(
        export_id=export_id,
        format=fmt,
        state_board=board,
        content_type=content_type,
        download_url=download_url(export_id, base_url),
        created_at=row.created_at,
    )


def get_export(db: Session, export_id: str, user_id: str) -> TranscriptExport:
    try:
        row = db.get(TranscriptExport, export_id)
    except SQLAlchemyError as exc:
        raise StorageError("Could not load transcript export") from exc

    if row is None or row.user_id != user_id or not Path(row.file_path).exists():
        raise NotFoundError(f"Export not found: {export_id}")
    return row

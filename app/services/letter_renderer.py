"""Introduction-letter rendering (PDF via reportlab, DOCX via python-docx)."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from xml.sax.saxutils import escape

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table

from app.constants import LetterFormat

logger = logging.getLogger(__name__)

_MONTHS_ID = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


def format_date_id(value: Optional[date]) -> str:
    if value is None:
        return "-"
    return f"{value.day} {_MONTHS_ID[value.month - 1]} {value.year}"


@dataclass
class LetterMember:
    name: str
    nim: Optional[str] = None


@dataclass
class LetterData:
    company_name: str
    company_address: str
    issued_on: date
    letter_purpose: Optional[str] = None
    company_supervisor: Optional[str] = None
    position: Optional[str] = None
    division: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    members: list[LetterMember] = field(default_factory=list)


@dataclass
class Letterhead:
    institution: str
    faculty: str
    signatory_name: str
    signatory_title: str

    @classmethod
    def from_env(cls) -> "Letterhead":
        return cls(
            institution=os.getenv("LETTER_INSTITUTION", "Universitas"),
            faculty=os.getenv("LETTER_FACULTY", "Fakultas Teknik"),
            signatory_name=os.getenv("LETTER_SIGNATORY_NAME", "Wakil Dekan"),
            signatory_title=os.getenv("LETTER_SIGNATORY_TITLE", "Wakil Dekan Bidang Akademik"),
        )


class LetterRenderer:
    def __init__(self, letterhead: Optional[Letterhead] = None) -> None:
        self.letterhead = letterhead or Letterhead.from_env()

    def render_letter(self, data: LetterData, letter_number: str, fmt: LetterFormat | str) -> bytes:
        fmt = LetterFormat(fmt)
        if fmt is LetterFormat.DOCX:
            payload = self._render_docx(data, letter_number)
        else:
            payload = self._render_pdf(data, letter_number)
        logger.info("Rendered letter %s as %s (%d bytes)", letter_number, fmt.value, len(payload))
        return payload

    # ------------------------------------------------------------------
    # Shared text
    # ------------------------------------------------------------------
    def _recipient_lines(self, data: LetterData) -> list[str]:
        lines = ["Kepada Yth."]
        if data.company_supervisor:
            lines.append(data.company_supervisor)
        lines.append(f"Pimpinan {data.company_name}")
        lines.append(data.company_address)
        return lines

    def _body(self, data: LetterData) -> str:
        placement = data.company_name
        if data.division:
            placement = f"divisi {data.division}, {placement}"
        period = ""
        if data.start_date or data.end_date:
            period = (
                f" pada periode {format_date_id(data.start_date)}"
                f" sampai dengan {format_date_id(data.end_date)}"
            )
        position = f" sebagai {data.position}" if data.position else ""
        return (
            f"Dengan hormat, bersama ini kami mengajukan permohonan agar mahasiswa {self.letterhead.faculty} "
            f"{self.letterhead.institution} berikut dapat melaksanakan Kerja Praktik di {placement}"
            f"{position}{period}."
        )

    def _closing(self) -> str:
        return "Atas perhatian dan kerja sama Bapak/Ibu, kami ucapkan terima kasih."

    def _member_rows(self, data: LetterData) -> list[list[str]]:
        rows = [["No", "Nama", "NIM"]]
        for index, member in enumerate(data.members, start=1):
            rows.append([str(index), member.name, member.nim or "-"])
        return rows

    # ------------------------------------------------------------------
    # Formats
    # ------------------------------------------------------------------
    def _render_pdf(self, data: LetterData, letter_number: str) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=inch,
            leftMargin=inch,
            topMargin=inch,
            bottomMargin=inch,
            title=f"Surat Pengantar {letter_number}",
        )
        styles = getSampleStyleSheet()
        heading = ParagraphStyle("Letterhead", parent=styles["Heading2"], alignment=TA_CENTER)
        body = ParagraphStyle("Body", parent=styles["Normal"], alignment=TA_JUSTIFY, leading=16)

        story = [
            Paragraph(escape(self.letterhead.institution.upper()), heading),
            Paragraph(escape(self.letterhead.faculty.upper()), heading),
            Spacer(1, 0.3 * inch),
            Paragraph(f"Nomor: {escape(letter_number)}", styles["Normal"]),
            Paragraph(f"Perihal: {escape(data.letter_purpose or 'Permohonan Kerja Praktik')}", styles["Normal"]),
            Paragraph(f"Tanggal: {format_date_id(data.issued_on)}", styles["Normal"]),
            Spacer(1, 0.2 * inch),
        ]
        story.extend(Paragraph(escape(line), styles["Normal"]) for line in self._recipient_lines(data))
        story.append(Spacer(1, 0.2 * inch))
        story.append(Paragraph(escape(self._body(data)), body))
        story.append(Spacer(1, 0.15 * inch))
        if data.members:
            story.append(Table(self._member_rows(data), hAlign="LEFT"))
            story.append(Spacer(1, 0.15 * inch))
        story.append(Paragraph(escape(self._closing()), body))
        story.append(Spacer(1, 0.5 * inch))
        story.append(Paragraph(escape(self.letterhead.signatory_title), styles["Normal"]))
        story.append(Spacer(1, 0.6 * inch))
        story.append(Paragraph(escape(self.letterhead.signatory_name), styles["Normal"]))

        doc.build(story)
        return buffer.getvalue()

    def _render_docx(self, data: LetterData, letter_number: str) -> bytes:
        doc = Document()

        for text in (self.letterhead.institution.upper(), self.letterhead.faculty.upper()):
            para = doc.add_paragraph()
            run = para.add_run(text)
            run.bold = True
            run.font.size = Pt(14)
            para.alignment = WD_ALIGN_PARAGRAPH.CENTER

        doc.add_paragraph(f"Nomor: {letter_number}")
        doc.add_paragraph(f"Perihal: {data.letter_purpose or 'Permohonan Kerja Praktik'}")
        doc.add_paragraph(f"Tanggal: {format_date_id(data.issued_on)}")
        doc.add_paragraph("\n".join(self._recipient_lines(data)))
        doc.add_paragraph(self._body(data)).alignment = WD_ALIGN_PARAGRAPH.JUSTIFY

        if data.members:
            rows = self._member_rows(data)
            table = doc.add_table(rows=len(rows), cols=3)
            for row_index, row in enumerate(rows):
                for col_index, value in enumerate(row):
                    table.cell(row_index, col_index).text = value

        doc.add_paragraph(self._closing())
        doc.add_paragraph(self.letterhead.signatory_title)
        doc.add_paragraph("\n\n")
        doc.add_paragraph(self.letterhead.signatory_name)

        buffer = io.BytesIO()
        doc.save(buffer)
        return buffer.getvalue()

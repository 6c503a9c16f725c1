from __future__ import annotations

import io
import logging
from typing import Optional

import pandas as pd
from fpdf import FPDF, XPos, YPos

from .models import EvaluationRecord, TRACKS
from .errors import ValidationError

logger = logging.getLogger(__name__)

GRADE_COLUMNS = [
    "student",
    "group",
    "project",
    "track",
    "cla1",
    "cla2",
    "cla3",
    "external",
    "total_internal",
    "total_external",
    "total",
    "published",
]


def build_grade_frame(track: Optional[str] = None, published_only: bool = False) -> pd.DataFrame:
    if track and track not in TRACKS:
        raise ValidationError(f"Invalid track '{track}'. Must be one of: {', '.join(TRACKS)}")
    qs = EvaluationRecord.objects.all()
    if track:
        qs = qs.filter(project__track=track)
    if published_only:
        qs = qs.filter(is_published=True)
    rows = qs.order_by("project__track", "group__code", "student__username").values_list(
        "student__username",
        "group__code",
        "project__title",
        "project__track",
        "cla1_converted",
        "cla2_converted",
        "cla3_converted",
        "external_converted",
        "total_internal",
        "total_external",
        "total",
        "is_published",
    )
    df = pd.DataFrame(list(rows), columns=GRADE_COLUMNS)
    df["group"] = df["group"].fillna("solo")
    return df


def summary_rows(df: pd.DataFrame) -> list[list]:
    rows = [["records", len(df)], ["published", int(df["published"].sum()) if len(df) else 0]]
    if len(df):
        desc = df["total"].astype(float).describe()
        for stat_name in ["mean", "min", "max", "std"]:
            value = desc.get(stat_name)
            rows.append([f"total.{stat_name}", round(float(value), 2) if pd.notna(value) else ""])
    return rows


def grade_sheet_csv(df: pd.DataFrame) -> str:
    csv_buf = io.StringIO()
    df.to_csv(csv_buf, index=False)
    return csv_buf.getvalue()


def grade_sheet_pdf(title: str, df: pd.DataFrame) -> bytes:
    rows = df.astype(str).values.tolist()
    pdf_bytes = _build_pdf_table(title, list(df.columns), rows, summary_rows(df))
    logger.info("Built grade sheet PDF '%s' with %s row(s)", title, len(rows))
    return pdf_bytes


def _build_pdf_table(title: str, columns: list[str], rows: list[list[str]], footer: list[list]) -> bytes:
    pdf = FPDF(orientation="L")
    pdf.set_auto_page_break(True, margin=15)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 14)
    pdf.cell(0, 10, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="L")
    pdf.ln(4)

    effective_width = pdf.w - 2 * pdf.l_margin
    col_count = max(1, len(columns))
    col_widths = [effective_width / col_count for _ in range(col_count)]

    def _draw_row(values: list[str], fill: bool = False) -> None:
        pdf.set_fill_color(245, 245, 245) if fill else pdf.set_fill_color(255, 255, 255)
        for idx in range(col_count):
            text = str(values[idx]) if idx < len(values) else ""
            pdf.cell(col_widths[idx], 6, text[:40], border=1, align="L", fill=fill)
        pdf.ln(6)

    pdf.set_font("Helvetica", "B", 8)
    _draw_row(columns, fill=True)

    pdf.set_font("Helvetica", "", 8)
    for row in rows:
        _draw_row(row)

    if footer:
        pdf.ln(4)
        pdf.set_font("Helvetica", "", 9)
        for label, value in footer:
            pdf.cell(0, 5, f"{label}: {value}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    return bytes(pdf.output())

#!/usr/bin/env python3
"""
Lönespec ART-tolkning

Reads payslip PDFs (lönespecifikationer) and summarizes their ART rows:
- Rebuilds text lines from positioned PDF fragments (y clustering)
- Picks rows starting with an ART code, stitches 9190 amount lines
- Groups rows per ART code across all pages
- Summarizes known codes (worked time, overtime, vacation, sick leave,
  salary, tax, allowances) and lists every code with its row count
- Reads the payslip head (period, payout date, net pay, tax table)
- Writes an Excel report and/or JSON
"""

import io
import re
import json
import logging
import argparse
import sys
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import yaml
import pandas as pd
import pdfplumber

from lonespec_models import (
    ArtGroup,
    ArticleRow,
    PageOut,
    ParsePayslipArtGroupsResult,
    PayslipHeader,
    PositionedFragment,
    ReconstructedLine,
)
from lonespec_summaries import (
    ART_DICTIONARY,
    ART_LINE_PATTERN,
    AbsenceSummary,
    ArtCode,
    ArtDefinition,
    MoneySummary,
    OvertimeSummary,
    PayslipArtOverview,
    TimeSummary,
    VacationSummary,
    build_art_dictionary,
    parse_swedish_number,
    summarize_payslip_art_groups,
)

APP_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
logging.getLogger("pdfminer").setLevel(logging.ERROR)


class PayslipReadError(Exception):
    """The file could not be opened as a PDF"""


class NoTextLayerError(PayslipReadError):
    """The PDF has no extractable text (scanned/image-only)"""


@dataclass
class Config:
    """Configuration for the ART parser"""
    y_tolerance: float = 2.0
    max_pages: Optional[int] = None
    continuation_arts: List[str] = None
    art_limits: Dict[str, Dict[str, float]] = None

    def __post_init__(self):
        if self.continuation_arts is None:
            # 9190 prints its amount on a separate line starting with the date range
            self.continuation_arts = ["9190"]
        if self.art_limits is None:
            self.art_limits = {}

    @property
    def art_dictionary(self) -> Dict[ArtCode, ArtDefinition]:
        if not self.art_limits:
            return ART_DICTIONARY
        return build_art_dictionary(self.art_limits)


CONFIG_PATH = Path(__file__).parent / "config.yaml"


def load_config_from_yaml(config_path: Path = CONFIG_PATH) -> Dict:
    """Read config.yaml, returns {} if the file doesn't exist or can't be read"""
    try:
        if not config_path.exists():
            return {}
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except Exception as e:
        logger.warning(f"Could not load config from {config_path}: {e}")
        return {}


def load_config(
    config_path: Path = CONFIG_PATH,
    y_tolerance: Optional[float] = None,
    max_pages: Optional[int] = None,
) -> Config:
    """Load configuration from config.yaml; explicit arguments win over the file"""
    data = load_config_from_yaml(Path(config_path))

    if y_tolerance is None:
        y_tolerance = float(data.get("y_tolerance") or 2.0)
    if max_pages is None:
        max_pages = data.get("max_pages")

    continuation = data.get("continuation_arts")
    art_limits = data.get("art_limits") or {}

    return Config(
        y_tolerance=y_tolerance,
        max_pages=int(max_pages) if max_pages else None,
        continuation_arts=[str(a) for a in continuation] if continuation is not None else None,
        art_limits={str(k): v for k, v in art_limits.items()},
    )


# ── Line reconstruction ──────────────────────────────────────────────────

def _join_cluster(items: List[PositionedFragment]) -> str:
    items = sorted(items, key=lambda f: f.x)
    return re.sub(r"\s+", " ", " ".join(f.text for f in items)).strip()


def items_to_lines(fragments: Iterable[PositionedFragment], y_tolerance: float = 2.0) -> List[ReconstructedLine]:
    """
    Group fragments into lines by y.

    Output runs top to bottom (descending y) and each line left to right.
    A fragment joins the current line while it is within y_tolerance of the
    line's first fragment; the anchor does not move.
    """
    points = sorted(
        (f for f in fragments if f.text and f.text.strip()),
        key=lambda f: (-f.y, f.x),
    )

    lines: List[ReconstructedLine] = []
    anchor_y: Optional[float] = None
    current: List[PositionedFragment] = []

    for p in points:
        if anchor_y is None or abs(p.y - anchor_y) > y_tolerance:
            if current:
                lines.append(ReconstructedLine(y=anchor_y, text=_join_cluster(current)))
            anchor_y = p.y
            current = [p]
        else:
            current.append(p)

    if current:
        lines.append(ReconstructedLine(y=anchor_y, text=_join_cluster(current)))

    return lines


# ── ART row selection and grouping ───────────────────────────────────────

# Amount line of a wrapped record: "2025-11-01 - 2025-11-30 1 250,00"
DATE_RANGE_LINE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}\s*-\s*\d{4}-\d{2}-\d{2}\b")


def extract_art_lines(lines: Iterable[ReconstructedLine], continuation_arts: Iterable[str] = ("9190",)) -> List[ArticleRow]:
    """
    Rows that start with an ART code, in page order.

    For codes in continuation_arts a following line that starts with a bare
    date range is emitted as "<code> <line>". Only those codes are stitched
    so unrelated lines never end up in a group.
    """
    stitch = set(continuation_arts)
    out: List[ArticleRow] = []
    current_art: Optional[str] = None

    for line in lines:
        text = line.text

        m = ART_LINE_PATTERN.match(text)
        if m:
            current_art = m.group(1)
            out.append(ArticleRow(raw=text))
            continue

        if current_art in stitch and DATE_RANGE_LINE_PATTERN.match(text):
            out.append(ArticleRow(raw=f"{current_art} {text}"))

    return out


def group_by_art(rows: Iterable[ArticleRow]) -> Dict[str, ArtGroup]:
    """Group rows by their first token, keeping first-seen code order and row order"""
    groups: Dict[str, ArtGroup] = {}
    for row in rows:
        tokens = row.raw.split()
        if not tokens:
            continue
        art = tokens[0]
        groups.setdefault(art, ArtGroup(art=art)).rows.append(row.raw)
    return groups


# ── Payslip head ─────────────────────────────────────────────────────────

class PayslipHeaderParser:
    """Parse the free-text payslip head (period, payout date, net pay, tax)"""

    MONEY = r"([-+]?\d[\d ]*,\d{2})"
    PERIOD_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})\s*-\s*(\d{4}-\d{2}-\d{2})")
    PAYOUT_PATTERN = re.compile(r"Utbetalningsdag\s*(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
    NET_PAY_PATTERN = re.compile(r"Att utbetala\s*" + MONEY, re.IGNORECASE)
    TAX_TABLE_PATTERN = re.compile(r"Skattetabell\s*(\d{1,2},\d{2})", re.IGNORECASE)
    PRELIMINARY_TAX_PATTERN = re.compile(r"Preliminär skatt\s*" + MONEY, re.IGNORECASE)
    COST_CENTER_PATTERN = re.compile(r"Kostnadsställe\s*([A-Za-z0-9\-]+)", re.IGNORECASE)
    EMPLOYMENT_RATE_PATTERN = re.compile(r"Sysselsättningsgrad\s*(\d[\d ]*,\d{2})", re.IGNORECASE)
    GROSS_PATTERN = re.compile(r"Bruttolön perioden\s*" + MONEY, re.IGNORECASE)
    COMP_PATTERN = re.compile(r"Komp\s*(\d[\d ]*,\d{2})", re.IGNORECASE)
    ANNUAL_WORK_TIME_PATTERN = re.compile(r"Årsarbetstid\s*(\d[\d ]*,\d{2})", re.IGNORECASE)

    @staticmethod
    def _number(pattern: re.Pattern, text: str) -> Optional[float]:
        m = pattern.search(text)
        return parse_swedish_number(m.group(1)) if m else None

    def parse(self, text: str) -> PayslipHeader:
        text = re.sub(r"[ \t\u00a0]+", " ", text.replace("\r", "")).strip()
        header = PayslipHeader()

        m = self.PERIOD_PATTERN.search(text)
        if m:
            header.period_from, header.period_to = m.group(1), m.group(2)
        else:
            header.notes.append("Kunde inte hitta period (YYYY-MM-DD - YYYY-MM-DD) i texten.")

        m = self.PAYOUT_PATTERN.search(text)
        header.payout_date = m.group(1) if m else None

        header.net_pay_sek = self._number(self.NET_PAY_PATTERN, text)
        if header.net_pay_sek is None:
            header.notes.append("Kunde inte hitta 'Att utbetala'.")

        m = self.TAX_TABLE_PATTERN.search(text)
        header.tax_table = m.group(1) if m else None
        header.preliminary_tax_sek = self._number(self.PRELIMINARY_TAX_PATTERN, text)

        m = self.COST_CENTER_PATTERN.search(text)
        header.cost_center = m.group(1) if m else None

        rate = self._number(self.EMPLOYMENT_RATE_PATTERN, text)
        header.employment_rate_percent = int(round(rate)) if rate is not None else None

        header.gross_period_sek = self._number(self.GROSS_PATTERN, text)
        header.comp_hours = self._number(self.COMP_PATTERN, text)
        header.annual_work_time_hours = self._number(self.ANNUAL_WORK_TIME_PATTERN, text)
        return header


# ── PDF parsing ──────────────────────────────────────────────────────────

PdfSource = Union[str, Path, bytes, bytearray]


@dataclass
class PayslipAnalysis:
    """Everything read from one payslip"""
    file_name: str
    header: PayslipHeader
    art_groups: Dict[str, ArtGroup]
    overview: PayslipArtOverview
    pages: List[PageOut] = field(default_factory=list)

    def to_dict(self, include_lines: bool = False) -> Dict:
        out = {
            "file_name": self.file_name,
            "header": self.header.to_dict(),
            "art_groups": [asdict(g) for g in self.art_groups.values()],
            "overview": self.overview.to_dict(),
        }
        if include_lines:
            out["pages"] = [
                {"page": p.page, "lines": [asdict(line) for line in p.lines]} for p in self.pages
            ]
        return out


class PayslipArtParser:
    """
    Read a payslip PDF page by page and group its ART rows.

    pdf_open is the PDF opener (pdfplumber.open by default); tests pass a
    fake that returns pages with height and extract_words().
    """

    def __init__(self, config: Optional[Config] = None, pdf_open: Callable = pdfplumber.open):
        self.config = config or load_config()
        self.pdf_open = pdf_open
        self.header_parser = PayslipHeaderParser()

    @staticmethod
    def page_fragments(page) -> List[PositionedFragment]:
        """Words of a page as fragments, y flipped to PDF user space (bottom-up)"""
        height = float(page.height)
        words = page.extract_words(keep_blank_chars=True) or []
        return [
            PositionedFragment(text=w["text"], x=float(w["x0"]), y=height - float(w["bottom"]))
            for w in words
        ]

    def _open(self, source: PdfSource):
        if isinstance(source, (bytes, bytearray)):
            if not bytes(source[:1024]).lstrip().startswith(b"%PDF"):
                raise PayslipReadError("Endast PDF-filer är tillåtna.")
            return self.pdf_open(io.BytesIO(bytes(source)))

        path = Path(source)
        if not path.exists():
            raise PayslipReadError(f"Filen finns inte: {path}")
        if path.suffix.lower() != ".pdf":
            raise PayslipReadError("Endast PDF-filer är tillåtna.")
        return self.pdf_open(str(path))

    def read_fragments(self, source: PdfSource) -> List[List[PositionedFragment]]:
        """Fragments per page, limited to config.max_pages"""
        try:
            with self._open(source) as pdf:
                pages = list(pdf.pages)
                if self.config.max_pages and self.config.max_pages > 0:
                    pages = pages[:self.config.max_pages]
                return [self.page_fragments(p) for p in pages]
        except PayslipReadError:
            raise
        except Exception as e:
            logger.error(f"Error reading PDF: {e}")
            raise PayslipReadError("Kunde inte tolka PDF:en.") from e

    def parse(self, source: PdfSource, include_pages: bool = True) -> ParsePayslipArtGroupsResult:
        page_fragments = self.read_fragments(source)
        if not any(page_fragments):
            raise NoTextLayerError("PDF:en saknar text. Om den är scannad (bild) krävs OCR.")

        pages: List[PageOut] = []
        all_rows: List[ArticleRow] = []

        for page_num, fragments in enumerate(page_fragments, start=1):
            lines = items_to_lines(fragments, self.config.y_tolerance)
            rows = extract_art_lines(lines, self.config.continuation_arts)
            all_rows.extend(rows)
            logger.debug(f"  Page {page_num}: {len(lines)} lines, {len(rows)} ART rows")
            if include_pages:
                pages.append(PageOut(page=page_num, lines=lines, art_groups=list(group_by_art(rows).values())))

        art_groups = group_by_art(all_rows)
        return ParsePayslipArtGroupsResult(art_groups=art_groups, pages=pages if include_pages else None)

    def analyze(self, source: PdfSource, file_name: Optional[str] = None) -> PayslipAnalysis:
        if file_name is None:
            file_name = Path(source).name if isinstance(source, (str, Path)) else "lönespec.pdf"
        logger.info(f"Processing payslip: {file_name}")

        result = self.parse(source, include_pages=True)
        text = "\n".join(line.text for p in result.pages for line in p.lines)
        header = self.header_parser.parse(text)
        overview = summarize_payslip_art_groups(result.art_groups, self.config.art_dictionary)

        logger.info(
            f"  {len(result.art_groups)} ART codes, {result.total_rows} rows, "
            f"{len(overview.summaries)} summarized"
        )
        for note in header.notes:
            logger.debug(f"  Note: {note}")

        return PayslipAnalysis(
            file_name=file_name,
            header=header,
            art_groups=result.art_groups,
            overview=overview,
            pages=result.pages,
        )


# ── Reports ──────────────────────────────────────────────────────────────

# Presentation assumption: one vacation day counts as a 5 hour workday
VACATION_HOURS_PER_DAY = 5.0
# Computed vs printed total may differ by rounding on the payslip
TOTAL_MISMATCH_TOLERANCE = 0.05
DEFINITIONS_BY_ART = {code.value: d for code, d in ART_DICTIONARY.items()}


class ReportGenerator:
    """Build tables and Excel/JSON reports from analyses"""

    SUMMARY_COLUMNS = [
        "Fil", "Art", "Benämning", "Typ", "Rader", "Tolkade rader",
        "Timmar", "Dagar", "À-pris", "Belopp (beräknat)", "Belopp (rad)",
        "Belopp", "Avvikelse", "Månad",
    ]

    @staticmethod
    def display_total(computed: float, from_row: Optional[float]) -> Tuple[float, bool]:
        """Printed total when present, otherwise computed; flag when they disagree"""
        if from_row is None:
            return computed, False
        return from_row, abs(abs(from_row) - abs(computed)) > TOTAL_MISMATCH_TOLERANCE

    @staticmethod
    def summary_row(file_name: str, art: str, summary) -> Dict:
        definition = DEFINITIONS_BY_ART.get(art)
        row = {
            "Fil": file_name,
            "Art": art,
            "Benämning": definition.label if definition else summary.description,
            "Typ": definition.kind.value if definition else "",
            "Rader": summary.rows_count,
            "Tolkade rader": summary.matched_rows,
            "Timmar": None,
            "Dagar": None,
            "À-pris": None,
            "Belopp (beräknat)": None,
            "Belopp (rad)": None,
            "Belopp": None,
            "Avvikelse": "",
            "Månad": summary.month_iso or "",
        }

        if isinstance(summary, TimeSummary):
            row["Timmar"] = round(summary.hours_total, 2)
            row["Dagar"] = len(summary.dates_iso)
        elif isinstance(summary, OvertimeSummary):
            total, mismatch = ReportGenerator.display_total(summary.sek_total_computed, summary.sek_total_from_row)
            row.update({
                "Timmar": round(summary.hours_total, 2),
                "À-pris": summary.sek_per_hour,
                "Belopp (beräknat)": round(summary.sek_total_computed, 2),
                "Belopp (rad)": summary.sek_total_from_row,
                "Belopp": round(total, 2),
                "Avvikelse": "ja" if mismatch else "",
            })
        elif isinstance(summary, AbsenceSummary):
            total, mismatch = ReportGenerator.display_total(summary.sek_total_computed, summary.sek_total_from_row)
            row.update({
                "Dagar": summary.days_total,
                "À-pris": summary.sek_per_day,
                "Belopp (beräknat)": round(summary.sek_total_computed, 2),
                "Belopp (rad)": summary.sek_total_from_row,
                "Belopp": round(total, 2),
                "Avvikelse": "ja" if mismatch else "",
            })
        elif isinstance(summary, VacationSummary):
            row["Dagar"] = summary.day_count
            row["Timmar"] = summary.day_count * VACATION_HOURS_PER_DAY
        elif isinstance(summary, MoneySummary):
            row["Belopp"] = round(summary.sek_total, 2)
        return row

    @staticmethod
    def summary_frame(analyses: List[PayslipAnalysis]) -> pd.DataFrame:
        rows = [
            ReportGenerator.summary_row(a.file_name, art, s)
            for a in analyses
            for art, s in a.overview.summaries.items()
        ]
        return pd.DataFrame(rows, columns=ReportGenerator.SUMMARY_COLUMNS)

    @staticmethod
    def date_frame(analyses: List[PayslipAnalysis]) -> pd.DataFrame:
        """One row per code and date, for calendar views"""
        rows = []
        for a in analyses:
            for art, s in a.overview.summaries.items():
                if isinstance(s, TimeSummary):
                    values = {d: ("Timmar", m / 60.0) for d, m in s.minutes_by_date.items()}
                elif isinstance(s, OvertimeSummary):
                    values = {d: ("Timmar", h) for d, h in s.hours_by_date.items()}
                elif isinstance(s, (AbsenceSummary, MoneySummary)):
                    values = {d: ("Belopp", v) for d, v in s.sek_by_date.items()}
                else:
                    values = {d: ("Timmar", VACATION_HOURS_PER_DAY) for d in s.dates_iso}
                for d in s.dates_iso:
                    unit, value = values.get(d, ("", None))
                    rows.append({
                        "Fil": a.file_name,
                        "Art": art,
                        "Datum": d,
                        "Enhet": unit,
                        "Värde": round(value, 4) if value is not None else None,
                    })
        df = pd.DataFrame(rows, columns=["Fil", "Art", "Datum", "Enhet", "Värde"])
        return df.sort_values(["Fil", "Datum", "Art"]).reset_index(drop=True) if not df.empty else df

    @staticmethod
    def by_art_frame(analyses: List[PayslipAnalysis]) -> pd.DataFrame:
        rows = []
        for a in analyses:
            for r in a.overview.by_art:
                rows.append({
                    "Fil": a.file_name,
                    "Art": r.art,
                    "Rubrik (från första raden)": r.description,
                    "Rader": r.rows_count,
                    "Summerad": "ja" if r.art in a.overview.summaries else "nej",
                })
        return pd.DataFrame(rows, columns=["Fil", "Art", "Rubrik (från första raden)", "Rader", "Summerad"])

    @staticmethod
    def raw_rows_frame(analyses: List[PayslipAnalysis]) -> pd.DataFrame:
        rows = [
            {"Fil": a.file_name, "Art": g.art, "Rad": raw}
            for a in analyses
            for g in a.art_groups.values()
            for raw in g.rows
        ]
        return pd.DataFrame(rows, columns=["Fil", "Art", "Rad"])

    @staticmethod
    def header_frame(analyses: List[PayslipAnalysis]) -> pd.DataFrame:
        rows = []
        for a in analyses:
            h = a.header
            check = a.overview.qualified_overtime_check
            rows.append({
                "Fil": a.file_name,
                "Period från": h.period_from,
                "Period till": h.period_to,
                "Utbetalningsdag": h.payout_date,
                "Att utbetala": h.net_pay_sek,
                "Bruttolön perioden": h.gross_period_sek,
                "Preliminär skatt": h.preliminary_tax_sek,
                "Skattetabell": h.tax_table,
                "Kostnadsställe": h.cost_center,
                "Sysselsättningsgrad": h.employment_rate_percent,
                "Komp": h.comp_hours,
                "Årsarbetstid": h.annual_work_time_hours,
                "Kval. övertid 2x": check.status.value if check else "",
                "Noteringar": "; ".join(h.notes + ([check.note] if check else [])),
            })
        return pd.DataFrame(rows)

    @staticmethod
    def save_excel(analyses: List[PayslipAnalysis], output_path: str):
        """Write Lönebesked / Summering / Arter / Datum / Rader sheets"""
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            ReportGenerator.header_frame(analyses).to_excel(writer, sheet_name="Lönebesked", index=False)
            ReportGenerator.summary_frame(analyses).to_excel(writer, sheet_name="Summering", index=False)
            ReportGenerator.by_art_frame(analyses).to_excel(writer, sheet_name="Arter", index=False)
            ReportGenerator.date_frame(analyses).to_excel(writer, sheet_name="Datum", index=False)
            ReportGenerator.raw_rows_frame(analyses).to_excel(writer, sheet_name="Rader", index=False)

            for ws in writer.book.worksheets:
                for col in ws.columns:
                    width = max((len(str(c.value)) for c in col if c.value is not None), default=8)
                    ws.column_dimensions[col[0].column_letter].width = min(max(width + 2, 8), 80)

        logger.info(f"Excel report saved: {output_path} ({len(analyses)} payslips)")

    @staticmethod
    def save_json(analyses: List[PayslipAnalysis], output_path: str, include_lines: bool = False):
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump([a.to_dict(include_lines) for a in analyses], f, indent=2, ensure_ascii=False)
        logger.info(f"JSON saved: {output_path}")


def process_payslips(
    payslip_paths: List[str],
    output_xlsx: Optional[str] = None,
    output_json: Optional[str] = None,
    config: Optional[Config] = None,
) -> List[PayslipAnalysis]:
    """Main processing function"""
    if config is None:
        config = load_config()

    parser = PayslipArtParser(config)
    analyses = []
    for path in payslip_paths:
        try:
            analyses.append(parser.analyze(path))
        except PayslipReadError as e:
            logger.error(f"Error processing payslip {path}: {e}")

    if not analyses:
        logger.warning("No payslips could be read")
        return analyses

    if output_xlsx:
        ReportGenerator.save_excel(analyses, output_xlsx)
    if output_json:
        ReportGenerator.save_json(analyses, output_json)
    return analyses


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize ART rows of Swedish payslip PDFs.")
    parser.add_argument("payslips", nargs="+", help="Payslip PDF files")
    parser.add_argument("--out", "-o", default="Lönespecrapport.xlsx", help="Excel report")
    parser.add_argument("--json", default=None, help="Also write the analyses as JSON")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(Path(args.config))
    analyses = process_payslips(args.payslips, args.out, args.json, config)
    return 0 if analyses else 1


if __name__ == "__main__":
    sys.exit(main())

"""
Shared data types for the payslip ART pipeline.

Fragments and lines come from the PDF layer, rows and groups are built by
the line selector and grouper, and every summarizer reads ArtGroup only.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PositionedFragment:
    """One text run from the PDF content stream, origin in PDF user space (y grows upwards)."""

    text: str
    x: float
    y: float


@dataclass(frozen=True)
class ReconstructedLine:
    """One horizontal line rebuilt from fragments with close y values."""

    y: float
    text: str


@dataclass(frozen=True)
class ArticleRow:
    """A line that starts a payroll record (leading ART code)."""

    raw: str


@dataclass
class ArtGroup:
    """All raw rows sharing one ART code, in encounter order."""

    art: str
    rows: List[str] = field(default_factory=list)


@dataclass
class PageOut:
    """Debug view of one page: its lines and the ART groups found on it."""

    page: int
    lines: List[ReconstructedLine]
    art_groups: List[ArtGroup]


@dataclass
class ParsePayslipArtGroupsResult:
    art_groups: Dict[str, ArtGroup]
    pages: Optional[List[PageOut]] = None

    @property
    def total_rows(self) -> int:
        return sum(len(g.rows) for g in self.art_groups.values())


@dataclass
class PayslipHeader:
    """Free-text fields from the payslip head (outside the ART rows)."""

    period_from: Optional[str] = None
    period_to: Optional[str] = None
    payout_date: Optional[str] = None
    net_pay_sek: Optional[float] = None
    tax_table: Optional[str] = None
    preliminary_tax_sek: Optional[float] = None
    cost_center: Optional[str] = None
    employment_rate_percent: Optional[int] = None
    gross_period_sek: Optional[float] = None
    comp_hours: Optional[float] = None
    annual_work_time_hours: Optional[float] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)

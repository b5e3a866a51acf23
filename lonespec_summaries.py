"""
Per-ART summarizers for lönespecifikationer

Turns grouped ART rows into structured summaries:
- Worked time / standby / comp bank (minutes per date)
- Overtime, OB and karens (hours x SEK/h, printed row total)
- Sick leave and other absence (days x SEK/day)
- Vacation (covered days only)
- Money-only items (salary, tax, union fee, allowances)

Every code the payslip format knows is listed in ART_DICTIONARY and mapped
to one summarizer through its ArtKind. Unknown codes only show up in the
by_art listing.

Summarizers never raise on bad rows: a row that can't be read is left out
of the totals and shows up as matched_rows < rows_count.
"""

import logging
import math
import re
from dataclasses import dataclass, field, asdict, replace
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from lonespec_models import ArtGroup

logger = logging.getLogger(__name__)


# Line leader: 2-5 digits or K + 3-5 digits, followed by whitespace
ART_LINE_PATTERN = re.compile(r"^(\d{2,5}|K\d{3,5})\s")
DATE_RANGE_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})\s*-\s*(\d{4}-\d{2}-\d{2})")
ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
# "33 724,00", "-2 000,00", "0,25"
SWEDISH_NUMBER_PATTERN = re.compile(r"[-+]?\d[\d\s]*,\d{1,2}")
# Time tokens may be integers ("8") as well as decimals ("8,00")
TIME_TOKEN_PATTERN = re.compile(r"[-+]?\d+(?:\s\d{3})*(?:,\d{1,2})?")
STRICT_NUMBER_PATTERN = re.compile(r"[-+]?\d+(\.\d+)?")

MAX_RANGE_DAYS = 370
RATE_EPSILON = 0.005
UNKNOWN_DESCRIPTION = "Okänd"


# ── Text and number helpers ──────────────────────────────────────────────

def normalize_spaces(s: str) -> str:
    return re.sub(r"\s+", " ", s.replace("\u00a0", " ")).strip()


def parse_swedish_number(raw: str) -> Optional[float]:
    """Parse Swedish notation ("1 234,56", "1.234,56") to float, None if not a number"""
    s = re.sub(r"\s", "", raw).replace(".", "").replace(",", ".", 1)
    if not STRICT_NUMBER_PATTERN.fullmatch(s):
        return None
    return float(s)


def extract_swedish_numbers(text: str) -> List[float]:
    out = []
    for token in SWEDISH_NUMBER_PATTERN.findall(text):
        n = parse_swedish_number(token)
        if n is not None:
            out.append(n)
    return out


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def description_from_raw_row(art: str, raw: str) -> str:
    """
    Row text without the leading code and without anything from the first date on.

    "2101 Maskinskötseltillägg 2025-12-01 - ..." -> "Maskinskötseltillägg"
    """
    s = normalize_spaces(raw)
    if s.startswith(art + " "):
        s = s[len(art):].strip()

    m = ISO_DATE_PATTERN.search(s)
    if m:
        s = s[:m.start()].strip()

    s = re.sub(r"\s+", " ", s).strip()
    return s or UNKNOWN_DESCRIPTION


# ── Dates ────────────────────────────────────────────────────────────────

def parse_iso_date(iso: str) -> Optional[date]:
    if not ISO_DATE_PATTERN.fullmatch(iso):
        return None
    try:
        return date.fromisoformat(iso)
    except ValueError:
        return None


def expand_iso_date_range(from_iso: str, to_iso: str) -> List[str]:
    """
    Every day from from_iso to to_iso inclusive.

    Walks backwards when to < from. Stops after MAX_RANGE_DAYS days so a
    garbled range can't run away. Invalid dates give an empty list.
    """
    start = parse_iso_date(from_iso)
    end = parse_iso_date(to_iso)
    if start is None or end is None:
        return []

    step = timedelta(days=1 if start <= end else -1)
    out = []
    cur = start
    for _ in range(MAX_RANGE_DAYS):
        out.append(cur.isoformat())
        if cur == end:
            break
        cur += step
    return out


def pick_best_month_iso(dates_iso: Iterable[str]) -> Optional[str]:
    """
    Year-month ("YYYY-MM") holding the most dates.

    Dates are scanned in sorted order and a tie keeps the month seen first,
    so the earliest month wins.
    """
    counts: Dict[str, int] = {}
    for d in sorted(dates_iso):
        if not ISO_DATE_PATTERN.fullmatch(d):
            continue
        ym = d[:7]
        counts[ym] = counts.get(ym, 0) + 1

    best = None
    best_n = 0
    for ym, n in counts.items():
        if n > best_n:
            best = ym
            best_n = n
    return best


def _distribute(target: Dict[str, float], days: List[str], value: float):
    """Spread value evenly over days"""
    if not days:
        return
    share = value / len(days)
    for d in days:
        target[d] = target.get(d, 0.0) + share


# ── Parsed row view ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class ParsedArtRow:
    art: str
    description: str
    raw: str
    numbers: List[float]
    date_from: Optional[str] = None
    date_to: Optional[str] = None

    def covered_days(self) -> List[str]:
        if not self.date_from or not self.date_to:
            return []
        return expand_iso_date_range(self.date_from, self.date_to)

    def text_after_range(self) -> Optional[str]:
        """Row text following the date range, None when the row has no range"""
        m = DATE_RANGE_PATTERN.search(self.raw)
        if not m:
            return None
        return self.raw[m.end():].strip()

    def text_after_code(self) -> str:
        return self.raw[len(self.art):].strip()


def parse_art_row(raw: str) -> Optional[ParsedArtRow]:
    s = normalize_spaces(raw)
    m = ART_LINE_PATTERN.match(s + " ")
    if not m:
        return None
    art = m.group(1)

    dm = DATE_RANGE_PATTERN.search(s)
    if dm:
        # The range itself is not a number; scan the text on both sides of it
        numbers = extract_swedish_numbers(s[len(art):dm.start()]) + extract_swedish_numbers(s[dm.end():])
    else:
        numbers = extract_swedish_numbers(s[len(art):])

    return ParsedArtRow(
        art=art,
        description=description_from_raw_row(art, s),
        raw=s,
        numbers=numbers,
        date_from=dm.group(1) if dm else None,
        date_to=dm.group(2) if dm else None,
    )


# ── ART dictionary ───────────────────────────────────────────────────────

class ArtKind(str, Enum):
    TIME = "time"
    OVERTIME = "overtime"
    ABSENCE = "absence"
    VACATION = "vacation"
    MONEY = "money"


class ArtCode(str, Enum):
    """Every ART code with a dedicated summarizer"""

    MONTHLY_SALARY = "070"
    OVERTIME_SIMPLE = "301"
    OVERTIME_QUALIFIED = "302"
    OVERTIME_TO_COMP = "311"
    QUALIFIED_OVERTIME_TO_COMP = "312"
    QUALIFIED_OVERTIME_RECALCULATED = "313"
    WORKED_TIME = "315"
    STANDBY = "317"
    FILL_TIME = "320"
    OB_EVENING = "350"
    OB_NIGHT = "351"
    OB_WEEKEND = "352"
    OB_HOLIDAY = "353"
    KARENS = "430"
    SICK_DEDUCTION = "431"
    SICK_PAY = "432"
    PARENTAL_LEAVE = "440"
    CARE_OF_CHILD = "445"
    VACATION = "510"
    VACATION_SAVED = "511"
    PRELIMINARY_TAX = "950"
    SEAFARER_DEDUCTION = "955"
    UNION_FEE = "960"
    MACHINE_CARE = "2101"
    OFFICER_ALLOWANCE = "2105"
    RETROACTIVE_PAY = "9190"
    GROSS_PAY = "9991"
    COMP_EARNED = "K100"
    COMP_TAKEN = "K200"


@dataclass(frozen=True)
class ArtLimits:
    """Plausibility bounds for one code. max_quantity is hours or days depending on kind."""

    max_quantity: float = 24.0
    max_rate: float = 100_000.0
    max_amount: float = 10_000_000.0
    # max_quantity applies per covered day of the row's date range
    quantity_per_day: bool = False
    # Deductions and reversals print a negative quantity
    allow_negative: bool = False


@dataclass(frozen=True)
class ArtDefinition:
    code: ArtCode
    label: str
    kind: ArtKind
    limits: ArtLimits = ArtLimits()


DAILY_HOURS = ArtLimits(max_quantity=24.0)
OVERTIME_HOURS = ArtLimits(max_quantity=24.0, quantity_per_day=True)
DEDUCTION_HOURS = ArtLimits(max_quantity=24.0, quantity_per_day=True, allow_negative=True)
RECALCULATED_HOURS = ArtLimits(max_quantity=48.0)
MONTHLY_HOURS = ArtLimits(max_quantity=500.0)
DAY_COUNT = ArtLimits(max_quantity=370.0)
DEDUCTION_DAYS = ArtLimits(max_quantity=370.0, allow_negative=True)
MONEY_ONLY = ArtLimits()

ART_DICTIONARY: Dict[ArtCode, ArtDefinition] = {
    d.code: d for d in [
        ArtDefinition(ArtCode.MONTHLY_SALARY, "Månadslön", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.OVERTIME_SIMPLE, "Övertid enkel", ArtKind.OVERTIME, OVERTIME_HOURS),
        ArtDefinition(ArtCode.OVERTIME_QUALIFIED, "Övertid kvalificerad", ArtKind.OVERTIME, OVERTIME_HOURS),
        ArtDefinition(ArtCode.OVERTIME_TO_COMP, "Övertid till komp", ArtKind.OVERTIME, OVERTIME_HOURS),
        ArtDefinition(ArtCode.QUALIFIED_OVERTIME_TO_COMP, "Kval. övertid till komp", ArtKind.OVERTIME, OVERTIME_HOURS),
        ArtDefinition(ArtCode.QUALIFIED_OVERTIME_RECALCULATED, "Kval. övertid omräknad", ArtKind.TIME, RECALCULATED_HOURS),
        ArtDefinition(ArtCode.WORKED_TIME, "Arbetad tid", ArtKind.TIME, DAILY_HOURS),
        ArtDefinition(ArtCode.STANDBY, "Beredskap", ArtKind.TIME, DAILY_HOURS),
        ArtDefinition(ArtCode.FILL_TIME, "Fyllnadstid", ArtKind.OVERTIME, OVERTIME_HOURS),
        ArtDefinition(ArtCode.OB_EVENING, "OB kväll", ArtKind.OVERTIME, MONTHLY_HOURS),
        ArtDefinition(ArtCode.OB_NIGHT, "OB natt", ArtKind.OVERTIME, MONTHLY_HOURS),
        ArtDefinition(ArtCode.OB_WEEKEND, "OB helg", ArtKind.OVERTIME, MONTHLY_HOURS),
        ArtDefinition(ArtCode.OB_HOLIDAY, "OB storhelg", ArtKind.OVERTIME, MONTHLY_HOURS),
        ArtDefinition(ArtCode.KARENS, "Karensavdrag", ArtKind.OVERTIME, DEDUCTION_HOURS),
        ArtDefinition(ArtCode.SICK_DEDUCTION, "Sjukavdrag dag 2-14", ArtKind.ABSENCE, DEDUCTION_DAYS),
        ArtDefinition(ArtCode.SICK_PAY, "Sjuklön dag 2-14", ArtKind.ABSENCE, DAY_COUNT),
        ArtDefinition(ArtCode.PARENTAL_LEAVE, "Föräldraledighet", ArtKind.ABSENCE, DAY_COUNT),
        ArtDefinition(ArtCode.CARE_OF_CHILD, "Vård av barn", ArtKind.ABSENCE, DAY_COUNT),
        ArtDefinition(ArtCode.VACATION, "Semester", ArtKind.VACATION),
        ArtDefinition(ArtCode.VACATION_SAVED, "Sparad semester uttag", ArtKind.VACATION),
        ArtDefinition(ArtCode.PRELIMINARY_TAX, "Preliminär skatt", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.SEAFARER_DEDUCTION, "Sjöinkomstavdrag", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.UNION_FEE, "Fackavgift", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.MACHINE_CARE, "Maskinskötseltillägg", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.OFFICER_ALLOWANCE, "Befälstillägg", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.RETROACTIVE_PAY, "Retroaktiv lön", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.GROSS_PAY, "Bruttolön", ArtKind.MONEY, MONEY_ONLY),
        ArtDefinition(ArtCode.COMP_EARNED, "Komp intjänad", ArtKind.TIME, MONTHLY_HOURS),
        ArtDefinition(ArtCode.COMP_TAKEN, "Komp uttag", ArtKind.TIME, MONTHLY_HOURS),
    ]
}


def build_art_dictionary(limit_overrides: Optional[Mapping[str, Mapping]] = None) -> Dict[ArtCode, ArtDefinition]:
    """
    ART_DICTIONARY with per-code limits replaced from config.

    limit_overrides: {"315": {"max_quantity": 24}, ...}. Unknown codes and
    unknown keys are ignored with a warning.
    """
    dictionary = dict(ART_DICTIONARY)
    for code_str, values in (limit_overrides or {}).items():
        try:
            code = ArtCode(str(code_str))
        except ValueError:
            logger.warning(f"art_limits: unknown ART code {code_str!r}, ignored")
            continue
        fields = ArtLimits.__dataclass_fields__
        known = {
            k: bool(v) if fields[k].type is bool else float(v)
            for k, v in (values or {}).items() if k in fields
        }
        unknown = set(values or {}) - set(known)
        if unknown:
            logger.warning(f"art_limits[{code_str}]: unknown keys {sorted(unknown)}, ignored")
        definition = dictionary[code]
        dictionary[code] = replace(definition, limits=replace(definition.limits, **known))
    return dictionary


# ── Summary types ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ArtSummary:
    art: str
    description: str
    rows_count: int
    matched_rows: int

    def to_dict(self) -> Dict:
        return {"kind": type(self).__name__, **asdict(self)}


@dataclass(frozen=True)
class TimeSummary(ArtSummary):
    total_minutes: int
    dates_iso: List[str]
    month_iso: Optional[str]
    minutes_by_date: Dict[str, float] = field(default_factory=dict)

    @property
    def hours_total(self) -> float:
        return self.total_minutes / 60.0

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["hours_total"] = self.hours_total
        return data


@dataclass(frozen=True)
class OvertimeSummary(ArtSummary):
    hours_total: float
    sek_per_hour: Optional[float]
    sek_total_computed: float
    sek_total_from_row: Optional[float]
    dates_iso: List[str]
    month_iso: Optional[str]
    hours_by_date: Dict[str, float] = field(default_factory=dict)
    sek_by_date: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class AbsenceSummary(ArtSummary):
    days_total: float
    sek_per_day: Optional[float]
    sek_total_computed: float
    sek_total_from_row: Optional[float]
    dates_iso: List[str]
    month_iso: Optional[str]
    sek_by_date: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class VacationSummary(ArtSummary):
    day_count: int
    dates_iso: List[str]
    month_iso: Optional[str]


@dataclass(frozen=True)
class MoneySummary(ArtSummary):
    sek_total: float
    dates_iso: List[str]
    month_iso: Optional[str]
    sek_by_date: Dict[str, float] = field(default_factory=dict)


# ── Row parsers ──────────────────────────────────────────────────────────

def parse_minutes_after_date_range(raw: str, max_hours: float = 24.0) -> Optional[int]:
    """
    Minutes from the first plausible hour value after the date range.

    Tokens outside [0, max_hours] are skipped so totals glued onto the same
    line are not mistaken for time.
    """
    s = normalize_spaces(raw)
    dm = DATE_RANGE_PATTERN.search(s)
    if not dm:
        return None

    after = s[dm.end():].strip()
    for token in TIME_TOKEN_PATTERN.findall(after):
        hours = parse_swedish_number(token.strip())
        if hours is None:
            continue
        if hours < 0 or hours > max_hours:
            continue
        return round_half_up(hours * 60)
    return None


@dataclass(frozen=True)
class QuantityRate:
    quantity: float
    rate: float
    row_total: Optional[float]


def quantity_cap(limits: ArtLimits, days: List[str]) -> float:
    """Largest plausible quantity for a row covering days"""
    if limits.quantity_per_day:
        return limits.max_quantity * max(1, len(days))
    return limits.max_quantity


def parse_quantity_rate(parsed: ParsedArtRow, limits: ArtLimits) -> Optional[QuantityRate]:
    """
    quantity, rate and optional printed total, in that order after the date range.

    Tokens are read by position. When the quantity or the rate fails its
    bound the row is not used at all; a bad total only drops the total.
    """
    after = parsed.text_after_range()
    if after is None:
        return None
    tokens = extract_swedish_numbers(after)
    if len(tokens) < 2:
        return None

    quantity, rate = tokens[0], tokens[1]
    if quantity < 0 and not limits.allow_negative:
        return None
    if abs(quantity) > quantity_cap(limits, parsed.covered_days()):
        return None
    if not 0 < rate <= limits.max_rate:
        return None

    row_total = None
    if len(tokens) > 2 and abs(tokens[2]) <= limits.max_amount:
        row_total = tokens[2]

    return QuantityRate(quantity=quantity, rate=rate, row_total=row_total)


def parse_money(parsed: ParsedArtRow, limits: ArtLimits) -> Optional[float]:
    """Last plausible amount after the date range, or after the code when there is no range"""
    tail = parsed.text_after_range()
    if tail is None:
        tail = parsed.text_after_code()
    values = [n for n in extract_swedish_numbers(tail) if abs(n) <= limits.max_amount]
    return values[-1] if values else None


# ── Summarizers ──────────────────────────────────────────────────────────

def _group_description(group: ArtGroup) -> str:
    return description_from_raw_row(group.art, group.rows[0] if group.rows else "")


def _sorted_by_date(values: Dict[str, float]) -> Dict[str, float]:
    return {d: values[d] for d in sorted(values)}


def summarize_time(group: Optional[ArtGroup], definition: ArtDefinition) -> Optional[TimeSummary]:
    """
    Worked time, standby, recalculated overtime and comp bank.

    Dates are collected from every row with a range, also rows where no
    time value could be read.
    """
    if not group or not group.rows:
        return None

    total_minutes = 0
    matched = 0
    dates: Set[str] = set()
    minutes_by_date: Dict[str, float] = {}

    for row in group.rows:
        parsed = parse_art_row(row)
        if not parsed:
            continue

        days = parsed.covered_days()
        dates.update(days)

        minutes = parse_minutes_after_date_range(parsed.raw, definition.limits.max_quantity)
        if minutes is None:
            logger.debug(f"ART {group.art}: no plausible time in {parsed.raw!r}")
            continue
        matched += 1
        total_minutes += minutes
        _distribute(minutes_by_date, days, minutes)

    # Total may never go negative
    total_minutes = max(0, total_minutes)

    if not matched and not dates:
        return None

    dates_iso = sorted(dates)
    return TimeSummary(
        art=group.art,
        description=_group_description(group),
        rows_count=len(group.rows),
        matched_rows=matched,
        total_minutes=total_minutes,
        dates_iso=dates_iso,
        month_iso=pick_best_month_iso(dates_iso),
        minutes_by_date=_sorted_by_date(minutes_by_date),
    )


class _RateTotals:
    """Accumulates quantity x rate rows and tracks whether all rates agree"""

    def __init__(self):
        self.quantity = 0.0
        self.computed = 0.0
        self.from_row: Optional[float] = None
        self.rate: Optional[float] = None
        self.rates_diverge = False
        self.matched = 0
        self.dates: Set[str] = set()
        self.quantity_by_date: Dict[str, float] = {}
        self.sek_by_date: Dict[str, float] = {}

    def add(self, qr: QuantityRate, days: List[str]):
        self.matched += 1
        self.quantity += qr.quantity
        computed = qr.quantity * qr.rate
        self.computed += computed

        if qr.row_total is not None:
            self.from_row = (self.from_row or 0.0) + qr.row_total

        if self.rate is None:
            self.rate = qr.rate
        elif abs(self.rate - qr.rate) > RATE_EPSILON:
            self.rates_diverge = True

        self.dates.update(days)
        _distribute(self.quantity_by_date, days, qr.quantity)
        _distribute(self.sek_by_date, days, computed)

    @property
    def consistent_rate(self) -> Optional[float]:
        return None if self.rates_diverge else self.rate


def _collect_rate_rows(group: ArtGroup, definition: ArtDefinition) -> _RateTotals:
    totals = _RateTotals()
    for row in group.rows:
        parsed = parse_art_row(row)
        if not parsed:
            continue
        qr = parse_quantity_rate(parsed, definition.limits)
        if qr is None:
            logger.debug(f"ART {group.art}: no quantity/rate pair in {parsed.raw!r}")
            continue
        totals.add(qr, parsed.covered_days())
    return totals


def summarize_overtime(group: Optional[ArtGroup], definition: ArtDefinition) -> Optional[OvertimeSummary]:
    """Overtime, OB, fill time and karens: hours, SEK/h and printed total per row"""
    if not group or not group.rows:
        return None

    totals = _collect_rate_rows(group, definition)
    if not totals.matched:
        return None

    dates_iso = sorted(totals.dates)
    return OvertimeSummary(
        art=group.art,
        description=_group_description(group),
        rows_count=len(group.rows),
        matched_rows=totals.matched,
        hours_total=totals.quantity,
        sek_per_hour=totals.consistent_rate,
        sek_total_computed=totals.computed,
        sek_total_from_row=totals.from_row,
        dates_iso=dates_iso,
        month_iso=pick_best_month_iso(dates_iso),
        hours_by_date=_sorted_by_date(totals.quantity_by_date),
        sek_by_date=_sorted_by_date(totals.sek_by_date),
    )


def summarize_absence(group: Optional[ArtGroup], definition: ArtDefinition) -> Optional[AbsenceSummary]:
    """Sick leave and other absence: days, SEK/day and printed total per row"""
    if not group or not group.rows:
        return None

    totals = _collect_rate_rows(group, definition)
    if not totals.matched:
        return None

    dates_iso = sorted(totals.dates)
    return AbsenceSummary(
        art=group.art,
        description=_group_description(group),
        rows_count=len(group.rows),
        matched_rows=totals.matched,
        days_total=totals.quantity,
        sek_per_day=totals.consistent_rate,
        sek_total_computed=totals.computed,
        sek_total_from_row=totals.from_row,
        dates_iso=dates_iso,
        month_iso=pick_best_month_iso(dates_iso),
        sek_by_date=_sorted_by_date(totals.sek_by_date),
    )


def summarize_vacation(group: Optional[ArtGroup], definition: ArtDefinition) -> Optional[VacationSummary]:
    """Vacation rows carry no quantity; a date range is enough"""
    if not group or not group.rows:
        return None

    matched = 0
    dates: Set[str] = set()
    for row in group.rows:
        parsed = parse_art_row(row)
        if not parsed:
            continue
        days = parsed.covered_days()
        if not days:
            continue
        matched += 1
        dates.update(days)

    if not matched:
        return None

    dates_iso = sorted(dates)
    return VacationSummary(
        art=group.art,
        description=_group_description(group),
        rows_count=len(group.rows),
        matched_rows=matched,
        day_count=len(dates_iso),
        dates_iso=dates_iso,
        month_iso=pick_best_month_iso(dates_iso),
    )


def summarize_money(group: Optional[ArtGroup], definition: ArtDefinition) -> Optional[MoneySummary]:
    if not group or not group.rows:
        return None

    sek_total = 0.0
    matched = 0
    dates: Set[str] = set()
    sek_by_date: Dict[str, float] = {}

    for row in group.rows:
        parsed = parse_art_row(row)
        if not parsed:
            continue
        amount = parse_money(parsed, definition.limits)
        if amount is None:
            logger.debug(f"ART {group.art}: no amount in {parsed.raw!r}")
            continue
        matched += 1
        sek_total += amount
        days = parsed.covered_days()
        dates.update(days)
        _distribute(sek_by_date, days, amount)

    if not matched:
        return None

    dates_iso = sorted(dates)
    return MoneySummary(
        art=group.art,
        description=_group_description(group),
        rows_count=len(group.rows),
        matched_rows=matched,
        sek_total=sek_total,
        dates_iso=dates_iso,
        month_iso=pick_best_month_iso(dates_iso),
        sek_by_date=_sorted_by_date(sek_by_date),
    )


SUMMARIZERS: Dict[ArtKind, Callable[[Optional[ArtGroup], ArtDefinition], Optional[ArtSummary]]] = {
    ArtKind.TIME: summarize_time,
    ArtKind.OVERTIME: summarize_overtime,
    ArtKind.ABSENCE: summarize_absence,
    ArtKind.VACATION: summarize_vacation,
    ArtKind.MONEY: summarize_money,
}


# ── Qualified overtime 2x check ──────────────────────────────────────────

class PairStatus(str, Enum):
    MATCH = "match"
    PARTNER_MISSING = "partner_missing"
    MISMATCH = "mismatch"


QUALIFIED_MULTIPLIER = 2
PAIR_TOLERANCE_MINUTES = 1


@dataclass(frozen=True)
class QualifiedOvertimeCheck:
    status: PairStatus
    base_minutes: Optional[int]
    recalculated_minutes: Optional[int]
    expected_minutes: Optional[int]
    note: str


def check_qualified_overtime(
    base: Optional[OvertimeSummary],
    recalculated: Optional[TimeSummary],
) -> Optional[QualifiedOvertimeCheck]:
    """
    Compare 312 (qualified overtime to comp) with 313 (same time x2).

    Informational only: the result is shown for review, never enforced.
    """
    if base is None and recalculated is None:
        return None

    base_code = ArtCode.QUALIFIED_OVERTIME_TO_COMP.value
    recalc_code = ArtCode.QUALIFIED_OVERTIME_RECALCULATED.value

    base_minutes = round_half_up(base.hours_total * 60) if base is not None else None
    recalc_minutes = recalculated.total_minutes if recalculated is not None else None
    expected = base_minutes * QUALIFIED_MULTIPLIER if base_minutes is not None else None

    if base is None:
        return QualifiedOvertimeCheck(
            PairStatus.PARTNER_MISSING, None, recalc_minutes, None,
            f"{recalc_code} finns men {base_code} saknas.",
        )
    if recalculated is None:
        rate_text = f" ({base.sek_per_hour:.2f} kr/tim)" if base.sek_per_hour is not None else ""
        return QualifiedOvertimeCheck(
            PairStatus.PARTNER_MISSING, base_minutes, None, expected,
            f"{base_code}{rate_text} finns men {recalc_code} saknas.",
        )

    if abs(recalc_minutes - expected) <= PAIR_TOLERANCE_MINUTES:
        return QualifiedOvertimeCheck(
            PairStatus.MATCH, base_minutes, recalc_minutes, expected,
            f"{recalc_code} motsvarar {QUALIFIED_MULTIPLIER}x {base_code}.",
        )
    return QualifiedOvertimeCheck(
        PairStatus.MISMATCH, base_minutes, recalc_minutes, expected,
        f"{recalc_code} = {recalc_minutes} min, förväntat {expected} min ({QUALIFIED_MULTIPLIER}x {base_code}).",
    )


# ── Overview ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ArtCountRow:
    art: str
    description: str
    rows_count: int


@dataclass(frozen=True)
class PayslipArtOverview:
    by_art: List[ArtCountRow]
    summaries: Dict[str, ArtSummary] = field(default_factory=dict)
    qualified_overtime_check: Optional[QualifiedOvertimeCheck] = None

    def get(self, art: Union[str, ArtCode]) -> Optional[ArtSummary]:
        key = art.value if isinstance(art, ArtCode) else str(art)
        return self.summaries.get(key)

    @property
    def unsummarized(self) -> List[ArtCountRow]:
        """Codes without a dedicated summary (catch-all table)"""
        return [r for r in self.by_art if r.art not in self.summaries]

    def to_dict(self) -> Dict:
        return {
            "summaries": {
                art: s.to_dict() for art, s in self.summaries.items()
            },
            "qualified_overtime_check": (
                asdict(self.qualified_overtime_check) if self.qualified_overtime_check else None
            ),
            "by_art": [asdict(r) for r in self.by_art],
        }


def _as_group_mapping(art_groups: Union[Mapping[str, ArtGroup], Iterable[ArtGroup]]) -> Dict[str, ArtGroup]:
    if isinstance(art_groups, Mapping):
        return dict(art_groups)
    return {g.art: g for g in art_groups}


def build_by_art(groups: Mapping[str, ArtGroup]) -> List[ArtCountRow]:
    rows = [
        ArtCountRow(
            art=g.art,
            description=_group_description(g),
            rows_count=len(g.rows),
        )
        for g in groups.values()
    ]
    # sorted() is stable: equal counts keep encounter order
    return sorted(rows, key=lambda r: r.rows_count, reverse=True)


def summarize_payslip_art_groups(
    art_groups: Union[Mapping[str, ArtGroup], Iterable[ArtGroup]],
    dictionary: Optional[Mapping[ArtCode, ArtDefinition]] = None,
) -> PayslipArtOverview:
    """
    Run every known summarizer and build the overview.

    A summarizer that fails is logged and left out; the other codes are
    unaffected.
    """
    groups = _as_group_mapping(art_groups)
    if dictionary is None:
        dictionary = ART_DICTIONARY

    summaries: Dict[str, ArtSummary] = {}
    for code, definition in dictionary.items():
        group = groups.get(code.value)
        if not group or not group.rows:
            continue
        summarizer = SUMMARIZERS[definition.kind]
        try:
            summary = summarizer(group, definition)
        except Exception as e:
            logger.error(f"Summarizer for ART {code.value} failed: {e}")
            continue
        if summary is not None:
            summaries[code.value] = summary

    base = summaries.get(ArtCode.QUALIFIED_OVERTIME_TO_COMP.value)
    recalculated = summaries.get(ArtCode.QUALIFIED_OVERTIME_RECALCULATED.value)
    check = check_qualified_overtime(
        base if isinstance(base, OvertimeSummary) else None,
        recalculated if isinstance(recalculated, TimeSummary) else None,
    )

    by_art = build_by_art(groups)
    logger.debug(f"Summarized {len(summaries)} of {len(by_art)} ART codes")
    return PayslipArtOverview(by_art=by_art, summaries=summaries, qualified_overtime_check=check)

#!/usr/bin/env python3
"""
Example payslips and tests for Lönespec ART-tolkning
"""

import json

import pandas as pd
import pytest

from lonespec_app import (
    Config,
    NoTextLayerError,
    PayslipArtParser,
    PayslipHeaderParser,
    PayslipReadError,
    ReportGenerator,
    extract_art_lines,
    group_by_art,
    items_to_lines,
    load_config,
    main,
    process_payslips,
)
from lonespec_models import ArticleRow, PositionedFragment, ReconstructedLine
from lonespec_summaries import ArtCode


# ── Fake PDF ─────────────────────────────────────────────────────────────

class FakePage:
    """Page with pdfplumber's word interface; rows are (y, [(x, text), ...]) bottom-up"""

    def __init__(self, rows, height=842.0):
        self.height = height
        self.rows = rows

    def extract_words(self, **kwargs):
        return [
            {"text": text, "x0": x, "bottom": self.height - y}
            for y, fragments in self.rows
            for x, text in fragments
        ]


class FakePdf:
    def __init__(self, pages):
        self.pages = pages

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def fake_opener(pages):
    opened = []

    def pdf_open(source):
        opened.append(source)
        return FakePdf(pages)

    pdf_open.opened = opened
    return pdf_open


PAGE_1 = [
    (800, [(40, "Lönespecifikation")]),
    (780, [(40, "Period"), (100, "2025-12-01 - 2025-12-31")]),
    (770, [(40, "Utbetalningsdag"), (140, "2025-12-25")]),
    # Amount printed slightly above the rest of the row
    (700, [(40, "070"), (80, "Månadslön"), (200, "2025-12-01 - 2025-12-31")]),
    (700.8, [(400, "33 724,00")]),
    (680, [(40, "315"), (80, "Arbetad tid"), (200, "2025-12-01 - 2025-12-01"), (400, "8,00")]),
    (660, [(40, "301"), (80, "Övertid enkel"), (200, "2025-12-02 - 2025-12-02"),
           (400, "0,25"), (450, "474,25"), (500, "118,56")]),
    (640, [(40, "9190"), (80, "Retroaktiv lön")]),
    (628, [(80, "2025-11-01 - 2025-11-30"), (400, "1 250,00")]),
    (100, [(40, "Att utbetala"), (400, "25 000,00")]),
]

PAGE_2 = [
    (700, [(40, "9999"), (80, "Okänd rad"), (200, "2025-12-01 - 2025-12-31"), (400, "10,00")]),
    (680, [(40, "315"), (80, "Arbetad tid"), (200, "2025-12-03 - 2025-12-03"), (400, "7,50")]),
]

PDF_BYTES = b"%PDF-1.4 fake"


def make_parser(pages=None, **config):
    pages = pages if pages is not None else [FakePage(PAGE_1), FakePage(PAGE_2)]
    return PayslipArtParser(Config(**config), pdf_open=fake_opener(pages))


# ── Line reconstruction ──────────────────────────────────────────────────

def test_items_to_lines_clusters_by_y():
    fragments = [
        PositionedFragment("b", 50, 100),
        PositionedFragment("a", 10, 101.5),
        PositionedFragment("c", 10, 90),
    ]
    assert items_to_lines(fragments) == [
        ReconstructedLine(101.5, "a b"),
        ReconstructedLine(90, "c"),
    ]


def test_items_to_lines_anchor_does_not_drift():
    """Each fragment is compared with the first fragment of the line, not the previous one"""
    fragments = [
        PositionedFragment("one", 0, 100),
        PositionedFragment("two", 10, 98.5),
        PositionedFragment("three", 20, 97),
    ]
    lines = items_to_lines(fragments, y_tolerance=2.0)
    assert [line.text for line in lines] == ["one two", "three"]
    assert lines[1].y == 97


def test_items_to_lines_edge_cases():
    test_cases = [
        ([], [], "no fragments"),
        ([PositionedFragment("  ", 0, 10)], [], "whitespace only"),
        ([PositionedFragment("a  ", 0, 10), PositionedFragment(" b", 5, 10)], ["a b"], "spaces collapsed"),
        ([PositionedFragment("x", 0, 10), PositionedFragment("y", 0, 12.5)], ["y", "x"], "beyond tolerance"),
    ]
    for fragments, expected, description in test_cases:
        assert [line.text for line in items_to_lines(fragments)] == expected, description


# ── ART row selection ────────────────────────────────────────────────────

def lines_of(*texts):
    return [ReconstructedLine(float(100 - i), t) for i, t in enumerate(texts)]


def test_extract_art_lines():
    lines = lines_of(
        "Lönespecifikation",
        "070 Månadslön 2025-12-01 - 2025-12-31 33 724,00",
        "2025-11-01 - 2025-11-30 1 250,00",
        "9190 Retroaktiv lön",
        "2025-11-01 - 2025-11-30 1 250,00",
        "K100 Komp intjänad 2025-12-01 - 2025-12-31 4,00",
        "123456 för långt",
        "5 för kort",
    )
    rows = [r.raw for r in extract_art_lines(lines)]
    assert rows == [
        "070 Månadslön 2025-12-01 - 2025-12-31 33 724,00",
        "9190 Retroaktiv lön",
        "9190 2025-11-01 - 2025-11-30 1 250,00",
        "K100 Komp intjänad 2025-12-01 - 2025-12-31 4,00",
    ]


def test_extract_art_lines_configurable_continuation():
    lines = lines_of("070 Månadslön", "2025-12-01 - 2025-12-31 33 724,00")
    assert [r.raw for r in extract_art_lines(lines)] == ["070 Månadslön"]
    assert [r.raw for r in extract_art_lines(lines, continuation_arts=["070"])] == [
        "070 Månadslön",
        "070 2025-12-01 - 2025-12-31 33 724,00",
    ]


def test_group_by_art():
    rows = [ArticleRow(r) for r in [
        "315 Arbetad tid 2025-12-01 - 2025-12-01 8,00",
        "070 Månadslön 2025-12-01 - 2025-12-31 33 724,00",
        "315 Arbetad tid 2025-12-02 - 2025-12-02 7,50",
    ]]
    groups = group_by_art(rows)

    assert list(groups) == ["315", "070"]
    assert groups["315"].rows == [rows[0].raw, rows[2].raw]
    assert sum(len(g.rows) for g in groups.values()) == len(rows)


# ── Payslip head ─────────────────────────────────────────────────────────

def test_payslip_header_parser():
    text = "\n".join([
        "Period 2025-12-01 - 2025-12-31",
        "Utbetalningsdag 2025-12-25",
        "Att utbetala 25 431,00",
        "Skattetabell 32,00",
        "Preliminär skatt 8 120,00",
        "Kostnadsställe 4100",
        "Sysselsättningsgrad 100,00",
        "Bruttolön perioden 33 724,00",
        "Komp 12,50",
        "Årsarbetstid 1 920,00",
    ])
    header = PayslipHeaderParser().parse(text)

    assert header.period_from == "2025-12-01"
    assert header.period_to == "2025-12-31"
    assert header.payout_date == "2025-12-25"
    assert header.net_pay_sek == pytest.approx(25431.0)
    assert header.tax_table == "32,00"
    assert header.preliminary_tax_sek == pytest.approx(8120.0)
    assert header.cost_center == "4100"
    assert header.employment_rate_percent == 100
    assert header.gross_period_sek == pytest.approx(33724.0)
    assert header.comp_hours == pytest.approx(12.5)
    assert header.annual_work_time_hours == pytest.approx(1920.0)
    assert header.notes == []


def test_payslip_header_parser_missing_fields():
    header = PayslipHeaderParser().parse("Lönespecifikation")
    assert header.period_from is None
    assert header.net_pay_sek is None
    assert len(header.notes) == 2


# ── PDF parser ───────────────────────────────────────────────────────────

def test_parse_groups_rows_across_pages():
    result = make_parser().parse(PDF_BYTES)

    assert list(result.art_groups) == ["070", "315", "301", "9190", "9999"]
    assert result.art_groups["315"].rows == [
        "315 Arbetad tid 2025-12-01 - 2025-12-01 8,00",
        "315 Arbetad tid 2025-12-03 - 2025-12-03 7,50",
    ]
    assert result.art_groups["070"].rows == ["070 Månadslön 2025-12-01 - 2025-12-31 33 724,00"]
    assert result.art_groups["9190"].rows == [
        "9190 Retroaktiv lön",
        "9190 2025-11-01 - 2025-11-30 1 250,00",
    ]
    assert result.total_rows == 7

    assert [p.page for p in result.pages] == [1, 2]
    assert [g.art for g in result.pages[0].art_groups] == ["070", "315", "301", "9190"]


def test_parse_without_pages():
    result = make_parser().parse(PDF_BYTES, include_pages=False)
    assert result.pages is None
    assert result.total_rows == 7


def test_parse_respects_max_pages():
    result = make_parser(max_pages=1).parse(PDF_BYTES)
    assert "9999" not in result.art_groups
    assert len(result.art_groups["315"].rows) == 1


def test_analyze_payslip():
    analysis = make_parser().analyze(PDF_BYTES, file_name="lonespec_2025-12.pdf")
    overview = analysis.overview

    assert analysis.file_name == "lonespec_2025-12.pdf"
    assert analysis.header.period_from == "2025-12-01"
    assert analysis.header.payout_date == "2025-12-25"
    assert analysis.header.net_pay_sek == pytest.approx(25000.0)

    assert overview.get(ArtCode.MONTHLY_SALARY).sek_total == pytest.approx(33724.0)

    worked = overview.get(ArtCode.WORKED_TIME)
    assert worked.total_minutes == 930
    assert worked.dates_iso == ["2025-12-01", "2025-12-03"]
    assert worked.month_iso == "2025-12"

    overtime = overview.get("301")
    assert overtime.hours_total == pytest.approx(0.25)
    assert overtime.sek_per_hour == pytest.approx(474.25)
    assert overtime.sek_total_from_row == pytest.approx(118.56)

    assert overview.get("9190").sek_total == pytest.approx(1250.0)
    assert overview.get("9999") is None
    assert [r.art for r in overview.unsummarized] == ["9999"]
    assert overview.qualified_overtime_check is None


def test_analyze_from_path(tmp_path):
    path = tmp_path / "Lönespec_december.pdf"
    path.write_bytes(PDF_BYTES)
    parser = make_parser()

    analysis = parser.analyze(path)
    assert analysis.file_name == "Lönespec_december.pdf"
    assert parser.pdf_open.opened == [str(path)]


def test_parser_read_errors(tmp_path):
    not_pdf = tmp_path / "payslip.txt"
    not_pdf.write_text("hello")

    test_cases = [
        (b"hello", "bytes without PDF signature"),
        (tmp_path / "missing.pdf", "missing file"),
        (not_pdf, "wrong extension"),
    ]
    for source, description in test_cases:
        with pytest.raises(PayslipReadError):
            make_parser().parse(source)


def test_parser_wraps_opener_errors():
    def broken_open(source):
        raise ValueError("not a pdf")

    parser = PayslipArtParser(Config(), pdf_open=broken_open)
    with pytest.raises(PayslipReadError) as excinfo:
        parser.parse(PDF_BYTES)
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_parser_no_text_layer():
    parser = make_parser(pages=[FakePage([]), FakePage([])])
    with pytest.raises(NoTextLayerError):
        parser.parse(PDF_BYTES)


# ── Config ───────────────────────────────────────────────────────────────

def test_load_config_from_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "y_tolerance: 3\n"
        "max_pages: 2\n"
        "continuation_arts: [9190, '9191']\n"
        "art_limits:\n"
        "  '315':\n"
        "    max_quantity: 12\n",
        encoding="utf-8",
    )
    config = load_config(config_path)

    assert config.y_tolerance == 3.0
    assert config.max_pages == 2
    assert config.continuation_arts == ["9190", "9191"]
    assert config.art_dictionary[ArtCode.WORKED_TIME].limits.max_quantity == 12.0

    # Explicit arguments win over the file
    assert load_config(config_path, y_tolerance=5.0).y_tolerance == 5.0


def test_load_config_defaults(tmp_path):
    broken = tmp_path / "broken.yaml"
    broken.write_text("y_tolerance: [unclosed\n", encoding="utf-8")

    for path in [tmp_path / "missing.yaml", broken]:
        config = load_config(path)
        assert config.y_tolerance == 2.0
        assert config.max_pages is None
        assert config.continuation_arts == ["9190"]
        assert config.art_limits == {}


def test_load_config_null_values(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("y_tolerance: null\nmax_pages: null\ncontinuation_arts:\nart_limits:\n", encoding="utf-8")
    config = load_config(config_path)

    assert config.y_tolerance == 2.0
    assert config.max_pages is None
    assert config.continuation_arts == ["9190"]
    assert config.art_limits == {}


# ── Reports ──────────────────────────────────────────────────────────────

def test_summary_frame():
    analysis = make_parser().analyze(PDF_BYTES, file_name="dec.pdf")
    df = ReportGenerator.summary_frame([analysis]).set_index("Art")

    assert list(df.index) == ["070", "301", "315", "9190"]
    assert df.loc["070", "Belopp"] == pytest.approx(33724.0)
    assert df.loc["070", "Benämning"] == "Månadslön"
    assert df.loc["315", "Timmar"] == pytest.approx(15.5)
    assert df.loc["301", "Belopp"] == pytest.approx(118.56)
    assert df.loc["301", "Avvikelse"] == ""
    assert df.loc["9190", "Tolkade rader"] == 1


def test_display_total():
    test_cases = [
        (118.5625, 118.56, (118.56, False), "rounding only"),
        (100.0, None, (100.0, False), "no printed total"),
        (100.0, 120.0, (120.0, True), "printed total differs"),
        (-100.0, 100.0, (100.0, False), "sign differs"),
    ]
    for computed, from_row, expected, description in test_cases:
        assert ReportGenerator.display_total(computed, from_row) == expected, description


def test_save_excel_and_json(tmp_path):
    analysis = make_parser().analyze(PDF_BYTES, file_name="dec.pdf")
    xlsx = tmp_path / "report.xlsx"
    out_json = tmp_path / "report.json"

    ReportGenerator.save_excel([analysis], str(xlsx))
    ReportGenerator.save_json([analysis], str(out_json), include_lines=True)

    with pd.ExcelFile(xlsx) as xls:
        assert xls.sheet_names == ["Lönebesked", "Summering", "Arter", "Datum", "Rader"]
        raw_rows = pd.read_excel(xls, sheet_name="Rader")
    assert len(raw_rows) == 7

    data = json.loads(out_json.read_text(encoding="utf-8"))
    assert data[0]["file_name"] == "dec.pdf"
    assert data[0]["overview"]["summaries"]["070"]["sek_total"] == pytest.approx(33724.0)
    assert len(data[0]["pages"]) == 2


def test_process_payslips_skips_unreadable(tmp_path):
    analyses = process_payslips([str(tmp_path / "missing.pdf")], str(tmp_path / "out.xlsx"), config=Config())
    assert analyses == []
    assert not (tmp_path / "out.xlsx").exists()


def test_main_without_readable_payslips(tmp_path):
    assert main([str(tmp_path / "missing.pdf"), "--out", str(tmp_path / "out.xlsx")]) == 1

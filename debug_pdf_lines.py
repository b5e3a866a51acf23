"""Quick debug script: print reconstructed lines of a payslip PDF to inspect ART row format."""
import sys

from lonespec_app import PayslipArtParser, load_config
from lonespec_summaries import ART_LINE_PATTERN

if len(sys.argv) < 2:
    print("Usage: python debug_pdf_lines.py <payslip.pdf> [y_tolerance]")
    sys.exit(1)

pdf_path = sys.argv[1]
y_tolerance = float(sys.argv[2]) if len(sys.argv) > 2 else None

parser = PayslipArtParser(load_config(y_tolerance=y_tolerance))
result = parser.parse(pdf_path, include_pages=True)

for page in result.pages:
    print(f"\n=== PAGE {page.page} ===")
    for j, line in enumerate(page.lines):
        # Mark lines that start an ART row
        marker = "ART" if ART_LINE_PATTERN.match(line.text) else "   "
        print(f"  {marker} LINE {j:3d} y={line.y:7.1f}: {line.text!r}")

print(f"\n=== ART GROUPS ({len(result.art_groups)}) ===")
for group in result.art_groups.values():
    print(f"  {group.art}: {len(group.rows)} rows")
    for raw in group.rows:
        print(f"      {raw!r}")

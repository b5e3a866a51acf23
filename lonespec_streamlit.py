#!/usr/bin/env python3
"""
Streamlit Web App for Lönespec ART-tolkning

Run with: streamlit run lonespec_streamlit.py
"""

import io
import logging

import streamlit as st
from pathlib import Path
import pandas as pd

# Import from the main app
from lonespec_app import (
    PayslipArtParser,
    PayslipReadError,
    ReportGenerator,
    load_config,
    CONFIG_PATH,
    APP_VERSION,
    logger
)
from lonespec_summaries import ART_LINE_PATTERN, PairStatus


def pdf_download(name: str, data: bytes, key=None):
    """Render a Streamlit download button for an uploaded PDF."""
    st.download_button(
        label=f"📄 {name}",
        data=data,
        file_name=name,
        mime="application/pdf",
        key=key,
    )


def analyze_uploads(payslip_files: list, y_tolerance: float):
    """Analyze uploaded payslips and build the Excel report. Returns a result dict."""
    config = load_config(CONFIG_PATH, y_tolerance=y_tolerance)
    parser = PayslipArtParser(config)

    analyses = []
    errors = []
    for name, data in payslip_files:
        try:
            analyses.append(parser.analyze(data, file_name=name))
        except PayslipReadError as e:
            logger.error(f"Error processing payslip {name}: {e}")
            errors.append((name, str(e)))

    excel_data = None
    if analyses:
        buffer = io.BytesIO()
        ReportGenerator.save_excel(analyses, buffer)
        excel_data = buffer.getvalue()

    return {
        "analyses": analyses,
        "errors": errors,
        "excel_data": excel_data,
        "payslip_files": payslip_files,
    }


def format_sek(value) -> str:
    if value is None:
        return "—"
    return f"{value:,.2f} kr".replace(",", " ").replace(".", ",")


def show_analysis(analysis, debug_mode: bool):
    """Header metrics, summaries and raw rows of one payslip"""
    h = analysis.header

    mc1, mc2, mc3, mc4 = st.columns(4)
    period = f"{h.period_from} – {h.period_to}" if h.period_from else "—"
    mc1.metric("Period", period)
    mc2.metric("Utbetalningsdag", h.payout_date or "—")
    mc3.metric("Att utbetala", format_sek(h.net_pay_sek))
    mc4.metric("Skattetabell", h.tax_table or "—")

    for note in h.notes:
        st.warning(note)

    check = analysis.overview.qualified_overtime_check
    if check is not None:
        if check.status == PairStatus.MATCH:
            st.success(f"✅ {check.note}")
        else:
            st.warning(f"⚠️ {check.note}")

    st.markdown("#### Summering")
    df_summary = ReportGenerator.summary_frame([analysis]).drop(columns=["Fil"])
    if df_summary.empty:
        st.info("Inga kända ART-koder hittades.")
    else:
        st.dataframe(df_summary, use_container_width=True, hide_index=True)

    unsummarized = analysis.overview.unsummarized
    if unsummarized:
        st.markdown("#### Övriga arter")
        st.dataframe(
            pd.DataFrame(
                [{"Art": r.art, "Rubrik": r.description, "Rader": r.rows_count} for r in unsummarized]
            ),
            use_container_width=True,
            hide_index=True,
        )

    with st.expander("📅 Per datum", expanded=False):
        df_dates = ReportGenerator.date_frame([analysis]).drop(columns=["Fil"])
        st.dataframe(df_dates, use_container_width=True, hide_index=True)

    with st.expander(f"🧾 Alla ART-rader ({sum(len(g.rows) for g in analysis.art_groups.values())})", expanded=False):
        for group in analysis.art_groups.values():
            st.markdown(f"**{group.art}** ({len(group.rows)} rader)")
            st.code("\n".join(group.rows), language=None)

    if debug_mode:
        with st.expander("🔍 Rekonstruerade rader", expanded=False):
            for page in analysis.pages:
                st.markdown(f"**Sida {page.page}** ({len(page.lines)} rader)")
                marked = [
                    f"{'ART' if ART_LINE_PATTERN.match(line.text) else '   '} {line.y:7.1f}  {line.text}"
                    for line in page.lines
                ]
                st.code("\n".join(marked), language=None)


def main():
    st.set_page_config(
        page_title="Lönespec ART-tolkning",
        page_icon="💰",
        layout="wide"
    )

    st.title("💰 Lönespec ART-tolkning")
    st.caption(f"Version: {APP_VERSION}")
    st.markdown("""
    Läser lönespecifikationer (PDF) och summerar raderna per ART-kod:
    arbetad tid, övertid, OB, frånvaro, semester och belopp.

    ---
    """)

    # Sidebar for configuration
    with st.sidebar:
        st.header("⚙️ Inställningar")

        defaults = load_config(CONFIG_PATH)
        y_tolerance = st.number_input(
            "Radtolerans (y)",
            min_value=0.5,
            max_value=10.0,
            value=float(defaults.y_tolerance),
            step=0.5,
            help="Max avstånd i höjdled för att textbitar ska räknas till samma rad",
        )

        st.divider()

        # Debug mode
        debug_mode = st.checkbox("Debug-läge (verbose logging)", value=False)
        logging.getLogger().setLevel(logging.DEBUG if debug_mode else logging.INFO)

    # Initialize result state
    if "result" not in st.session_state:
        st.session_state.result = None

    # Show upload UI only when no results are displayed
    if st.session_state.result is None:
        st.subheader("📁 Ladda upp lönespecifikationer")
        uploaded_pdfs = st.file_uploader(
            "Ladda upp en eller flera PDF-filer",
            type=["pdf"],
            accept_multiple_files=True,
            key="all_pdfs"
        )

        if uploaded_pdfs:
            st.success(f"💰 Lönebesked: {len(uploaded_pdfs)} st")
            with st.expander("Visa lönebesked"):
                for i, pdf in enumerate(uploaded_pdfs, 1):
                    pdf_download(pdf.name, pdf.getvalue(), key=f"dl_payslip_{i}")

        st.divider()
        default_output = "Lönespecrapport.xlsx"
        if uploaded_pdfs and len(uploaded_pdfs) == 1:
            default_output = f"Lönespecrapport_{Path(uploaded_pdfs[0].name).stem}.xlsx"

        output_name = st.text_input(
            "Output filnamn",
            value=default_output,
            help="Namnet på Excel-filen som ska genereras"
        )

        if st.button("Tolka lönespecar", type="primary", use_container_width=True):
            if not uploaded_pdfs:
                st.error("Inga PDF-filer uppladdade!")
                return

            progress_bar = st.progress(0)
            status_text = st.empty()

            try:
                status_text.text("Bearbetar...")
                progress_bar.progress(30)

                payslip_list = [(p.name, p.getvalue()) for p in uploaded_pdfs]
                result = analyze_uploads(payslip_list, y_tolerance)

                progress_bar.progress(100)
                status_text.text("Klar!")

                result["output_name"] = output_name
                st.session_state.result = result
                st.rerun()

            except Exception as e:
                st.error("Ett fel uppstod när PDF:en tolkades.")
                if debug_mode:
                    st.exception(e)

    # Show results if available
    if st.session_state.result is not None:
        res = st.session_state.result
        analyses = res["analyses"]

        for name, message in res["errors"]:
            st.error(f"{name}: {message}")

        if analyses:
            st.success(f"Tolkning genomförd! {len(analyses)} lönespec(ar)")

            if len(analyses) > 1:
                st.subheader("📋 Lönebesked")
                st.dataframe(
                    ReportGenerator.header_frame(analyses),
                    use_container_width=True,
                    hide_index=True,
                )

            st.subheader("📊 Resultat")
            if len(analyses) == 1:
                show_analysis(analyses[0], debug_mode)
            else:
                tabs = st.tabs([a.file_name for a in analyses])
                for tab, analysis in zip(tabs, analyses):
                    with tab:
                        show_analysis(analysis, debug_mode)

        # Download and reset buttons
        btn_col1, btn_col2 = st.columns(2)

        with btn_col1:
            if res["excel_data"]:
                st.download_button(
                    label="💾 Ladda ner Excel-rapport",
                    data=res["excel_data"],
                    file_name=res["output_name"],
                    mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                    use_container_width=True
                )

        with btn_col2:
            if st.button("🗑️ Rensa och ladda upp nya dokument", use_container_width=True):
                st.session_state.result = None
                # Clear the file uploader
                if "all_pdfs" in st.session_state:
                    del st.session_state["all_pdfs"]
                st.rerun()

    # Footer
    st.divider()
    st.markdown("""
    ### 📖 Användning

    1. **Ladda upp en eller flera lönespecifikationer** (PDF med textlager, inte scannad)
    2. **Klicka på "Tolka lönespecar"**
    3. Granska summeringen och ladda ner Excel-rapporten

    ### 📊 Output

    Excel-filen innehåller följande flikar:
    - **Lönebesked**: Period, utbetalningsdag, nettolön, skatt per fil
    - **Summering**: En rad per känd ART-kod med timmar, dagar, à-pris och belopp
    - **Arter**: Alla ART-koder med antal rader, även okända
    - **Datum**: Timmar/belopp fördelade per datum
    - **Rader**: Alla ART-rader som de lästes från PDF:en

    ### 🏷️ Tolkning

    - **Tid** (315, 317, 313, K100, K200): Timmar efter datumintervallet
    - **Övertid/OB** (301, 302, 311, 312, 320, 350–353, 430): Timmar × à-pris, belopp från raden
    - **Frånvaro** (431, 432, 440, 445): Dagar × à-pris
    - **Semester** (510, 511): Antal dagar i intervallet (1 dag = 5 timmar i rapporten)
    - **Belopp** (070, 950, 955, 960, 2101, 2105, 9190, 9991): Sista beloppet på raden

    312 och 313 jämförs: 313 ska vara 2× tiden på 312.
    """)


if __name__ == "__main__":
    main()

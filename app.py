# app.py
# -----------------------------------------------
# ⏱️ Pointage — suivi des heures de travail (Streamlit)
# -----------------------------------------------
# Requiert : streamlit, sqlmodel, pandas, reportlab, loguru

import io
from datetime import datetime, time

import pandas as pd
import streamlit as st

import config
from domain import Action, PointageError, Status
from log_config import setup_logger
from repository import WorkStore
from services import (
    ACTION_LABELS,
    MENUS,
    STATUS_LABELS,
    PresetPrompter,
    WeeklyAggregator,
    run_manual_entry,
    run_session_step,
)
from utils import (
    entries_to_dataframe,
    format_date,
    format_time,
    last_week_range,
    now_local,
    parse_hhmm,
)

TITRE_APP = "Pointage"

@st.cache_resource
def get_repo(url: str) -> WorkStore:
    setup_logger(level=config.LOG_LEVEL, log_file=config.LOG_FILE)
    return WorkStore(url, config.LOG_PATH, config.SUMMARY_PATH)

repo = get_repo(config.DB_URL)

# =========================
# Format
# =========================
def options_heures(step_min: int = 5) -> list[str]:
    return [f"{h:02d}:{m:02d}" for h in range(24) for m in range(0, 60, step_min)]

TIME_OPTIONS = options_heures(5)

def selectbox_state(label: str, key: str, default_value: str, options: list[str]):
    if key not in st.session_state:
        st.session_state[key] = default_value
    return st.selectbox(label, options=options, key=key)

def _flash(messages: list[str]) -> None:
    st.session_state["_flash"] = messages

def _flash_if_any() -> None:
    for msg in st.session_state.pop("_flash", []) or []:
        st.info(msg)

# =========================
# PDF
# =========================
def dataframe_en_pdf(df: pd.DataFrame, titre: str, resume: str | None = None) -> bytes:
    from reportlab.lib import colors
    from reportlab.lib.enums import TA_CENTER
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, topMargin=24, bottomMargin=24, leftMargin=24, rightMargin=24)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(name="TitleCentered", parent=styles["Title"], alignment=TA_CENTER)
    resume_style = ParagraphStyle(
        name="Resume", parent=styles["Normal"], alignment=TA_CENTER,
        textColor=colors.black, fontSize=11, leading=13, spaceBefore=4, spaceAfter=2
    )
    story = [Paragraph(titre, title_style), Spacer(1, 8)]
    if df.empty:
        story.append(Paragraph("Aucune entrée pour cette semaine.", styles["Normal"]))
    else:
        data = [list(df.columns)] + df.values.tolist()
        table = Table(data, repeatRows=1, hAlign="CENTER")
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F7")),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 10),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#E0E0E0")),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
        ]))
        story.append(table)
    if resume:
        story += [Spacer(1, 12)]
        box = Table([[Paragraph(resume.replace("\n", "<br/>"), resume_style)]], hAlign="CENTER")
        box.setStyle(TableStyle([
            ("BOX", (0, 0), (-1, -1), 0.6, colors.HexColor("#C7CCD6")),
            ("INNERPADDING", (0, 0), (-1, -1), 8),
        ]))
        story.append(box)
    doc.build(story)
    return buf.getvalue()

# =========================
# Page
# =========================
st.set_page_config(page_title=TITRE_APP, page_icon="⏱️", layout="centered")
st.markdown(f"### ⏱️ {TITRE_APP}")
_flash_if_any()

try:
    state = repo.current_state()
except PointageError as e:
    st.error(f"État de travail illisible : {e}")
    st.stop()

now = now_local()
for reminder in repo.due_reminders(now):
    st.warning(
        f"Vous travaillez depuis un long moment (rappel prévu à {format_time(reminder.trigger_at)}). "
        "Pensez à arrêter le travail.", icon="⏰"
    )

# =========================
# Session en cours
# =========================
st.subheader(STATUS_LABELS[state.status])
if state.status != Status.IDLE:
    st.caption(
        f"Session commencée à {format_time(state.start_time)} le {format_date(state.start_time.date())}"
        + (f" · en pause depuis {format_time(state.breaks[-1].start)}" if state.on_break else "")
    )

boutons = [a for a in MENUS[state.status] if a != Action.MANUAL_ENTRY]
cols = st.columns(len(boutons))
for col, action in zip(cols, boutons):
    if col.button(ACTION_LABELS[action], use_container_width=True, key=f"btn_{action.value}"):
        prompter = PresetPrompter(choice=action)
        try:
            run_session_step(repo, prompter)
        except PointageError as e:
            st.error(str(e))
        else:
            _flash(prompter.messages)
            st.rerun()

# =========================
# ➕ Saisie manuelle
# =========================
st.subheader("➕ Saisie manuelle")
jour = st.date_input("Date", value=now.date(), max_value=now.date(), format="DD/MM/YYYY")
selectbox_state("Début", "debut_str", format_time(config.DEFAULT_START), TIME_OPTIONS)
selectbox_state("Fin", "fin_str", format_time(config.DEFAULT_END), TIME_OPTIONS)
nb_pauses = st.number_input("Pauses", min_value=0, max_value=10, step=1, value=0)
pauses: list[time | None] = []
for i in range(1, int(nb_pauses) + 1):
    c1, c2 = st.columns(2)
    with c1:
        selectbox_state(f"Pause n°{i} début", f"pause_{i}_debut", format_time(config.DEFAULT_BREAK_START), TIME_OPTIONS)
    with c2:
        selectbox_state(f"Pause n°{i} fin", f"pause_{i}_fin", format_time(config.DEFAULT_BREAK_END), TIME_OPTIONS)
    pauses += [parse_hhmm(st.session_state[f"pause_{i}_debut"]), parse_hhmm(st.session_state[f"pause_{i}_fin"])]

if st.button("Enregistrer", use_container_width=True):
    prompter = PresetPrompter(
        choice=Action.MANUAL_ENTRY,
        break_count=str(int(nb_pauses)),
        work_date=jour,
        times=[parse_hhmm(st.session_state["debut_str"]), parse_hhmm(st.session_state["fin_str"])] + pauses,
    )
    try:
        result = run_manual_entry(repo, prompter)
    except PointageError as e:
        st.error(str(e))
    else:
        if result.entry is None:
            for msg in prompter.messages:
                st.warning(msg)
        else:
            _flash(prompter.messages)
            st.rerun()

# =========================
# 🗓️ Journal
# =========================
st.subheader("🗓️ Journal")
entries = repo.log.entries()
df_journal = entries_to_dataframe(entries)
if df_journal.empty:
    st.info("Journal vide.")
else:
    st.dataframe(df_journal.drop(columns=["Minutes"]), use_container_width=True, hide_index=True)

# =========================
# 📅 Rapport hebdomadaire
# =========================
st.subheader("📅 Rapport hebdomadaire")
ref = st.date_input("Semaine précédant le", value=now.date(), format="DD/MM/YYYY", key="ref_semaine")
ref_dt = datetime.combine(ref, time(0, 0))
aggregator = WeeklyAggregator(repo.log, repo.summary)
summary = aggregator.summarize(ref_dt)
st.markdown(summary.message.replace("\n", "  \n"))

if st.button("Écrire le résumé", use_container_width=True):
    aggregator.run(ref_dt)
    st.toast("Résumé hebdomadaire enregistré.", icon="✅")

lundi, dimanche = last_week_range(ref_dt)
semaine = [e for e in entries if lundi <= e.work_date <= dimanche]
df_semaine = entries_to_dataframe(semaine)
if not df_semaine.empty:
    df_semaine = df_semaine.drop(columns=["Minutes"]).sort_values("Date").reset_index(drop=True)
pdf_bytes = dataframe_en_pdf(
    df_semaine,
    titre=f"{TITRE_APP} — {format_date(lundi)} au {format_date(dimanche)}",
    resume=summary.message,
)
st.download_button(
    "Télécharger le PDF de la semaine",
    data=pdf_bytes,
    file_name=f"rapport_{lundi.isoformat()}.pdf",
    mime="application/pdf",
    use_container_width=True,
)

"""
docx_renderer.py
~~~~~~~~~~~~~~~~
Builds the two exported Word documents from a completed record:
the client CV (with optional headshot) and the registration form.
"""
import io
import logging
import re
from typing import Any, Dict, Iterable, Optional

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Cm, Pt

logger = logging.getLogger(__name__)

FONT = "Palatino Linotype"
PHOTO_CM = 4.7
PAGE_MARGIN_CM = 1.27

MONTHS = {
    1: "Jan", 2: "Feb", 3: "Mar", 4: "Apr", 5: "May", 6: "Jun",
    7: "Jul", 8: "Aug", 9: "Sep", 10: "Oct", 11: "Nov", 12: "Dec",
}

# (label, field) in the order the agency's form lists them
REGISTRATION_FIELDS = [
    ("Full Name", "fullName"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Languages", "languages"),
    ("Nationality", "nationality"),
    ("Date of Birth", "dob"),
    ("Gender", "gender"),
    ("Preferred Gender Pronouns", "preferredPronouns"),
    ("Marital Status", "maritalStatus"),
    ("Dependants", "dependants"),
    ("Are you legal and have the correct documents to work in the UK?", "workInUk"),
    ("National Insurance Number", "nationalInsuranceNumber"),
    ("UTR Number if Self-Employed", "utrNumber"),
    ("Do you have a current DBS?", "currentDBS"),
    ("Do you have a criminal record?", "criminalRecord"),
    ("Do you smoke/vape?", "smokesVapes"),
    ("Happy to work in a residence with pets?", "workWithPets"),
    ("Do you have a driving licence?", "drivingLicence"),
    ("Is your licence clean?", "licenceClean"),
    ("Positions applying for", "positionsApplyingFor"),
    ("Yearly desired salary", "yearlyDesiredSalary"),
    ("Current notice period", "currentNoticePeriod"),
    ("Preferred work location", "preferredWorkLocation"),
    ("Live in or out positions preferred?", "liveInOrOut"),
]


# ─── Text Helpers ────────────────────────────────────────────────────────────
def cap_job(title: Optional[str]) -> str:
    """Capitalise the first letter of each word, leaving the rest alone ("HR manager" → "HR Manager")."""
    if not title:
        return ""
    return " ".join(w[:1].upper() + w[1:] for w in title.split(" "))


def tidy(text: Optional[str]) -> str:
    """Fix the phrasing slips that most often survive extraction."""
    text = text or ""
    text = re.sub(r"\b[Ii]\s*am\s*responsible\s*for\b", "Responsible for", text)
    text = re.sub(r"\b[Pp]rinciple\b", "Principal", text)
    text = re.sub(r"\b[Dd]iscrete\b", "Discreet", text)
    return text.strip()


def fmt_date(value: Optional[str]) -> Optional[str]:
    """'2021-03' → 'Mar 2021'; years, 'Present' and free text pass through."""
    if not value:
        return None
    match = re.match(r"^(\d{4})-(\d{1,2})$", value.strip())
    if match:
        month = int(match.group(2))
        if month in MONTHS:
            return f"{MONTHS[month]} {match.group(1)}"
    return value


def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values if v)
    return str(values) if values else ""


# ─── Document Building Blocks ────────────────────────────────────────────────
def _new_document() -> Document:
    doc = Document()
    normal = doc.styles["Normal"]
    normal.font.name = FONT
    normal.font.size = Pt(11)
    for section in doc.sections:
        section.top_margin = Cm(PAGE_MARGIN_CM)
        section.bottom_margin = Cm(PAGE_MARGIN_CM)
        section.left_margin = Cm(PAGE_MARGIN_CM)
        section.right_margin = Cm(PAGE_MARGIN_CM)
    return doc


def _heading(doc, text: str) -> None:
    heading = doc.add_heading(level=2)
    run = heading.add_run(text)
    run.font.name = FONT


def _label_line(doc, label: str, value: Any) -> None:
    p = doc.add_paragraph()
    label_run = p.add_run(f"{label}: ")
    label_run.bold = True
    label_run.font.name = FONT
    value_run = p.add_run(_join(value))
    value_run.font.name = FONT
    p.paragraph_format.space_after = Pt(4)


def _bullets(doc, items: Iterable[str]) -> None:
    for item in items:
        if not item:
            continue
        p = doc.add_paragraph(style="List Bullet")
        run = p.add_run(tidy(item))
        run.font.name = FONT


def _save(doc) -> io.BytesIO:
    buffer = io.BytesIO()
    doc.save(buffer)
    buffer.seek(0)
    return buffer


# ─── Public API ──────────────────────────────────────────────────────────────
def render_final_cv_docx(cv: Dict[str, Any], headshot_path: Optional[str] = None) -> io.BytesIO:
    """
    Render the client-facing CV. Experience keeps the order the model
    returned it in (reverse chronological). Without a headshot a sized
    placeholder line is left where the photo goes.
    """
    personal = cv.get("personalDetails") or {}
    doc = _new_document()

    # ─── Header ──────────────────────────────────────────────────────────────
    name = doc.add_paragraph()
    name.alignment = WD_ALIGN_PARAGRAPH.CENTER
    name_run = name.add_run(cv.get("fullName") or "")
    name_run.bold = True
    name_run.font.size = Pt(18)

    title = doc.add_paragraph()
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    title_run = title.add_run(cap_job(cv.get("jobTitle")))
    title_run.italic = True
    title_run.font.size = Pt(12)

    photo = doc.add_paragraph()
    photo.alignment = WD_ALIGN_PARAGRAPH.CENTER
    if headshot_path:
        photo.add_run().add_picture(headshot_path, width=Cm(PHOTO_CM), height=Cm(PHOTO_CM))
    else:
        photo.add_run(f"[ Headshot Placeholder {PHOTO_CM} cm ]").font.size = Pt(10)

    # ─── Personal Details ────────────────────────────────────────────────────
    _heading(doc, "Personal Details")
    _label_line(doc, "Nationality", personal.get("nationality"))
    _label_line(doc, "Languages", personal.get("languages"))
    _label_line(doc, "Marital Status", personal.get("maritalStatus"))
    _label_line(doc, "Email", personal.get("email"))
    _label_line(doc, "Phone", personal.get("phone"))
    _label_line(doc, "Location", personal.get("location"))

    # ─── Profile ─────────────────────────────────────────────────────────────
    _heading(doc, "Profile")
    doc.add_paragraph(tidy(cv.get("profile")))

    # ─── Experience ──────────────────────────────────────────────────────────
    _heading(doc, "Experience")
    for entry in cv.get("experience") or []:
        role_line = doc.add_paragraph()
        role_run = role_line.add_run(f"{cap_job(entry.get('role'))} — {entry.get('company') or ''}")
        role_run.bold = True
        role_run.font.size = Pt(12)

        period = " - ".join(filter(None, [fmt_date(entry.get("startDate")), fmt_date(entry.get("endDate"))]))
        meta = " • ".join(filter(None, [entry.get("location"), period]))
        if meta:
            meta_run = doc.add_paragraph().add_run(meta)
            meta_run.italic = True
            meta_run.font.size = Pt(10)

        _bullets(doc, entry.get("bullets") or [])

    # ─── Education ───────────────────────────────────────────────────────────
    _heading(doc, "Education")
    for entry in cv.get("education") or []:
        years = " - ".join(filter(None, [entry.get("startYear"), entry.get("endYear")]))
        line = f"{entry.get('institution') or ''} — {entry.get('program') or ''}"
        if years:
            line += f" ({years})"
        doc.add_paragraph(line)

    _heading(doc, "Key Skills")
    _bullets(doc, cv.get("skills") or [])

    _heading(doc, "Interests")
    _bullets(doc, cv.get("interests") or [])

    logger.info(f"Rendered CV document for {cv.get('fullName') or 'unnamed candidate'}.")
    return _save(doc)


def render_registration_docx(reg: Dict[str, Any]) -> io.BytesIO:
    doc = _new_document()
    doc.add_heading("Registration Form", level=0)

    for label, field in REGISTRATION_FIELDS:
        _label_line(doc, label, reg.get(field))

    contact = reg.get("emergencyContactDetails") or {}
    heading = doc.add_paragraph()
    heading.add_run("Emergency Contact Details").bold = True
    _label_line(doc, "Name", contact.get("name"))
    _label_line(doc, "Telephone", contact.get("phone"))
    _label_line(doc, "Relationship to Candidate", contact.get("relationship"))

    return _save(doc)

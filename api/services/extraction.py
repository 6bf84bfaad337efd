"""Text extraction for uploaded materials and answer scripts."""

import io
import logging
import re
from typing import Any

from docx import Document as DocxDocument
from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_TYPE = "text/plain"

NO_ANSWER = "No answer found"


class ExtractionError(Exception):
    """Raised when a file's text cannot be extracted."""


def content_type_for(filename: str, content_type: str = "") -> str:
    """Resolve a MIME type, trusting the extension over the client header."""
    name = (filename or "").lower()
    if name.endswith(".pdf"):
        return PDF_TYPE
    if name.endswith(".docx"):
        return DOCX_TYPE
    if name.endswith(".txt"):
        return TEXT_TYPE
    return content_type or ""


def extract_pdf_text(content: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as e:
        raise ExtractionError(f"Could not read PDF: {e}") from e
    return "\n\n".join(pages).strip()


def extract_docx_text(content: bytes) -> str:
    try:
        document = DocxDocument(io.BytesIO(content))
    except Exception as e:
        raise ExtractionError(f"Could not read DOCX: {e}") from e
    return "\n".join(p.text for p in document.paragraphs).strip()


def extract_text(content: bytes, content_type: str) -> str:
    """Extract plain text from a PDF, DOCX or text upload."""
    if content_type == PDF_TYPE:
        return extract_pdf_text(content)
    if content_type == DOCX_TYPE:
        return extract_docx_text(content)
    if content_type == TEXT_TYPE:
        return content.decode("utf-8", errors="replace").strip()
    raise ExtractionError(f"Unsupported file type: {content_type or 'unknown'}")


def iter_questions(paper_data: dict[str, Any]):
    """Yield every question dict of a generated paper, section by section."""
    for section in (paper_data or {}).get("sections") or []:
        for question in section.get("questions") or []:
            if question.get("id"):
                yield question


def extract_answers_from_text(text: str, paper_data: dict[str, Any]) -> list[dict[str, str]]:
    """Split an answer script into per-question answers.

    An answer starts at the question id (optionally followed by ":", "-",
    "." or ")") and runs until the next line that begins with another
    question id of the same paper, or the end of text. An id at the start
    of a line wins over one found mid-line, as in "Answers: Q1: ...".
    Questions without a match get "No answer found".
    """
    questions = list(iter_questions(paper_data))
    ids = [str(q["id"]) for q in questions]
    if not ids:
        return []

    stops = "|".join(re.escape(qid) for qid in sorted(ids, key=len, reverse=True))
    answers = []

    body = r"(?![0-9A-Za-z])[ \t]*[:\-.)]?[ \t]*(.*?)"
    stop = rf"(?=^[ \t]*(?:{stops})(?![0-9A-Za-z])|\Z)"
    flags = re.IGNORECASE | re.DOTALL | re.MULTILINE

    for qid in ids:
        at_line_start = re.compile(rf"^[ \t]*{re.escape(qid)}{body}{stop}", flags)
        anywhere = re.compile(rf"(?<![0-9A-Za-z]){re.escape(qid)}{body}{stop}", flags)
        match = at_line_start.search(text or "") or anywhere.search(text or "")
        answer_text = match.group(1).strip() if match else ""
        answers.append({
            "question_id": qid,
            "answer_text": answer_text or NO_ANSWER,
        })

    found = sum(1 for a in answers if a["answer_text"] != NO_ANSWER)
    logger.info("Extracted %d of %d answers", found, len(answers))
    return answers

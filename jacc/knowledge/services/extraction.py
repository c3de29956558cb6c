import logging
import re
from pathlib import Path

from pydantic import BaseModel

from knowledge.config import settings

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV = "text/csv"
TEXT = "text/plain"
JPEG = "image/jpeg"
PNG = "image/png"
ZIP = "application/zip"


class UnsupportedFileType(ValueError):
    """No text extractor exists for this file type."""


class ExtractedDocument(BaseModel):
    """Result of content extraction from a file."""

    title: str
    text: str


def extract_text_plain(path: str) -> ExtractedDocument:
    """Extract content from a plain text file."""
    encodings = ["utf-8", "latin-1", "cp1252"]

    for encoding in encodings:
        try:
            with open(path, encoding=encoding) as f:
                text = f.read()
            return ExtractedDocument(title=Path(path).stem, text=text)
        except UnicodeDecodeError:
            continue

    raise ValueError(f"Could not decode file with any supported encoding: {path}")


def extract_pdf(path: str) -> ExtractedDocument:
    """Extract content from a PDF file using pdfminer.six."""
    from pdfminer.high_level import extract_text

    return ExtractedDocument(title=Path(path).stem, text=extract_text(path))


def extract_docx(path: str) -> ExtractedDocument:
    """Extract content from a DOCX file using python-docx."""
    from docx import Document

    doc = Document(path)
    text = "\n".join(p.text for p in doc.paragraphs)

    # Also pull table cells; rate sheets are often laid out as tables
    for table in doc.tables:
        for row in table.rows:
            text += "\n" + " | ".join(cell.text for cell in row.cells)

    title = doc.core_properties.title or Path(path).stem
    return ExtractedDocument(title=title, text=text)


def extract_xlsx(path: str) -> ExtractedDocument:
    """Extract every non-empty sheet of a workbook as a text table."""
    import pandas as pd

    workbook = pd.ExcelFile(path)
    sheets = []
    for sheet_name in workbook.sheet_names:
        df = workbook.parse(sheet_name)
        if df.empty:
            logger.debug(f"Skipping empty sheet {sheet_name} in {path}")
            continue
        sheets.append(f"# {sheet_name}\n\n{df.to_string(index=False)}")

    return ExtractedDocument(title=Path(path).stem, text="\n\n".join(sheets))


def extract_csv(path: str) -> ExtractedDocument:
    import pandas as pd

    df = pd.read_csv(path)
    text = "" if df.empty else df.to_string(index=False)
    return ExtractedDocument(title=Path(path).stem, text=text)


# MIME type to extractor mapping. Images and archives are accepted for
# upload but carry no extractable text.
EXTRACTORS = {
    TEXT: extract_text_plain,
    PDF: extract_pdf,
    DOCX: extract_docx,
    XLSX: extract_xlsx,
    CSV: extract_csv,
}

# File extension fallbacks
EXTENSION_MIME_MAP = {
    ".txt": TEXT,
    ".md": TEXT,
    ".pdf": PDF,
    ".docx": DOCX,
    ".xlsx": XLSX,
    ".csv": CSV,
    ".jpg": JPEG,
    ".jpeg": JPEG,
    ".png": PNG,
    ".zip": ZIP,
}


# Non-standard types browsers declare for files we store under a standard one
MIME_ALIASES = {
    "image/jpg": JPEG,
    "image/pjpeg": JPEG,
    "application/csv": CSV,
    "application/x-zip-compressed": ZIP,
}


def guess_mime_type(filename: str, declared: str | None = None) -> str:
    """
    Resolve a file's MIME type: the declared type when it is specific and
    accepted, otherwise by extension.

    Windows browsers declare ``.csv`` files as ``application/vnd.ms-excel``;
    a declared type outside the allow-list yields to an allowed extension.
    """
    suffix = Path(filename).suffix.lower()
    by_extension = EXTENSION_MIME_MAP.get(suffix, "application/octet-stream")
    if not declared:
        return by_extension

    declared = declared.split(";")[0].strip().lower()
    declared = MIME_ALIASES.get(declared, declared)
    if declared in ("application/octet-stream", ""):
        return by_extension
    if declared not in settings.allowed_mime_types and by_extension in settings.allowed_mime_types:
        return by_extension
    return declared


def extract_content(path: str, file_type: str) -> ExtractedDocument:
    """
    Extract text content from a file based on its type.

    Raises:
        UnsupportedFileType: If no extractor handles the type
        Exception: If extraction fails
    """
    extractor = EXTRACTORS.get(file_type)

    if not extractor:
        fallback_mime = EXTENSION_MIME_MAP.get(Path(path).suffix.lower())
        if fallback_mime:
            extractor = EXTRACTORS.get(fallback_mime)

    if not extractor:
        raise UnsupportedFileType(f"Unsupported file type: {file_type} for file {path}")

    try:
        return extractor(path)
    except Exception as e:
        logger.exception(f"Failed to extract content from {path}: {e}")
        raise


class ChunkSpec(BaseModel):
    """Specification for a single chunk of text."""

    index: int
    text: str
    char_start: int
    char_end: int


def normalize_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _break_point(text: str, floor: int, end: int) -> int:
    """Latest paragraph, sentence or word end in ``text[floor:end]``, else ``end``."""
    window = text[floor:end]

    paragraph = window.rfind("\n\n")
    if paragraph != -1:
        return floor + paragraph + 2

    for i in range(end, floor, -1):
        if text[i - 1] in ".!?\n":
            return i

    space = window.rfind(" ")
    return floor + space + 1 if space != -1 else end


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
) -> list[ChunkSpec]:
    """
    Split text into overlapping chunks of at most ``chunk_size`` characters.

    A chunk that does not reach the end of the text is cut at the last
    paragraph, sentence or word boundary in the final 20% of its window.
    Offsets refer to the whitespace-normalized text.
    """
    text = normalize_whitespace(text)
    chunks: list[ChunkSpec] = []
    start = 0

    while start < len(text):
        end = min(len(text), start + chunk_size)
        if end < len(text):
            end = _break_point(text, start + int(chunk_size * 0.8), end)

        chunks.append(
            ChunkSpec(index=len(chunks), text=text[start:end], char_start=start, char_end=end)
        )
        if end >= len(text):
            break
        # Overlap with the previous chunk unless that would not move forward
        start = end - overlap if end - overlap > start else end

    return chunks

import io
import logging
from enum import Enum
from typing import Optional

import fitz  # PyMuPDF
import pandas as pd
from docx import Document as DocxDocument

from ragcore.core.errors import ExtractionError, UnsupportedFormatError
from ragcore.models.chunk import ExtractedText

logger = logging.getLogger(__name__)


class FileFormat(str, Enum):
    text = "text"
    pdf = "pdf"
    docx = "docx"
    csv = "csv"


_MIME_FORMATS = {
    "text/plain": FileFormat.text,
    "text/markdown": FileFormat.text,
    "text/x-markdown": FileFormat.text,
    "application/pdf": FileFormat.pdf,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": FileFormat.docx,
    "text/csv": FileFormat.csv,
    "application/csv": FileFormat.csv,
}

_EXTENSION_FORMATS = {
    "txt": FileFormat.text,
    "md": FileFormat.text,
    "markdown": FileFormat.text,
    "pdf": FileFormat.pdf,
    "docx": FileFormat.docx,
    "csv": FileFormat.csv,
}


def detect_format(file_name: str = "", file_type: Optional[str] = None) -> FileFormat:
    """
    Resolves the declared type once, at the boundary.
    `file_type` may be a MIME type ("application/pdf; charset=...") or a bare
    extension ("pdf"); the file name extension is the fallback.
    """
    if file_type:
        declared = file_type.split(";")[0].strip().lower()
        if declared in _MIME_FORMATS:
            return _MIME_FORMATS[declared]
        if declared.lstrip(".") in _EXTENSION_FORMATS:
            return _EXTENSION_FORMATS[declared.lstrip(".")]

    if "." in file_name:
        ext = file_name.rsplit(".", 1)[-1].lower()
        if ext in _EXTENSION_FORMATS:
            return _EXTENSION_FORMATS[ext]

    raise UnsupportedFormatError(f"Unsupported file type: {file_type or file_name or 'unknown'}")


class TextExtractor:
    """
    Turns raw file bytes into plain text.
    - Text/Markdown: UTF-8 decode.
    - PDF: page text (PyMuPDF) concatenated in page order.
    - DOCX: raw paragraph text.
    - CSV: "Headers: ..." followed by "Row N: ..." lines.
    """

    def extract(self, file_bytes: bytes, file_format: FileFormat) -> ExtractedText:
        if file_format == FileFormat.text:
            text, page_count = self._extract_text(file_bytes), None
        elif file_format == FileFormat.pdf:
            text, page_count = self._extract_pdf(file_bytes)
        elif file_format == FileFormat.docx:
            text, page_count = self._extract_docx(file_bytes), None
        elif file_format == FileFormat.csv:
            text, page_count = self._extract_csv(file_bytes), None
        else:
            raise UnsupportedFormatError(f"Unsupported file type: {file_format}")

        logger.info(f"Extracted {len(text)} characters from {file_format.value} input ({len(file_bytes)} bytes)")
        return ExtractedText(
            text=text,
            file_format=file_format.value,
            page_count=page_count,
            word_count=len(text.split()),
            char_count=len(text)
        )

    def extract_file(self, file_bytes: bytes, file_name: str, file_type: Optional[str] = None) -> ExtractedText:
        return self.extract(file_bytes, detect_format(file_name, file_type))

    def _extract_text(self, file_bytes: bytes) -> str:
        try:
            return file_bytes.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"Failed to decode text as UTF-8: {e}") from e

    def _extract_pdf(self, file_bytes: bytes) -> tuple[str, int]:
        try:
            doc = fitz.open(stream=file_bytes, filetype="pdf")
        except Exception as e:
            raise ExtractionError(f"Failed to extract PDF: {e}") from e

        try:
            pages = [page.get_text("text") for page in doc]
            return "\n".join(pages), len(pages)
        except Exception as e:
            raise ExtractionError(f"Failed to extract PDF: {e}") from e
        finally:
            doc.close()

    def _extract_docx(self, file_bytes: bytes) -> str:
        try:
            doc = DocxDocument(io.BytesIO(file_bytes))
        except Exception as e:
            raise ExtractionError(f"Failed to extract DOCX: {e}") from e
        return "\n".join(p.text for p in doc.paragraphs)

    def _extract_csv(self, file_bytes: bytes) -> str:
        csv_text = self._extract_text(file_bytes)
        if not csv_text.strip():
            return ""

        try:
            df = pd.read_csv(io.StringIO(csv_text), dtype=str, keep_default_na=False, skip_blank_lines=True)
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ExtractionError(f"CSV parsing error: {e}") from e

        lines = [f"Headers: {', '.join(str(c) for c in df.columns)}"]
        for i, row in enumerate(df.itertuples(index=False), start=1):
            lines.append(f"Row {i}: {', '.join(row)}")
        return "\n".join(lines)

"""
Text Extraction Module

Pulls plain text out of uploaded papers (PDF, DOCX, TXT) in a shape the
segmenter understands: paragraphs separated by blank lines, lines inside
a paragraph joined, words hyphenated across line breaks rejoined.
"""

import re
from pathlib import Path
from typing import List

import docx
import fitz  # PyMuPDF
from rich.progress import track

from paperflip.utils import logger

SUPPORTED_SUFFIXES = (".pdf", ".docx", ".txt")

# "inter-\nnational" -> "international"
_HYPHEN_BREAK = re.compile(r"(\w)-\n(\w)")


def _fix_encoding(text: str) -> str:
    """Fix common encoding issues in extracted text."""
    replacements = {
        "ﬁ": "fi",
        "ﬂ": "fl",
        "ﬀ": "ff",
        "ﬃ": "ffi",
        "ﬄ": "ffl",
        "\xa0": " ",  # Non-breaking space
        "\xad": "",  # Soft hyphen
        "\f": "\n",
    }

    for old, new in replacements.items():
        text = text.replace(old, new)

    return text


def _reflow(block: str) -> str:
    """Join the lines of one paragraph into a single line."""
    block = _HYPHEN_BREAK.sub(r"\1\2", block)
    lines = [line.strip() for line in block.split("\n")]
    return re.sub(r"[ \t]+", " ", " ".join(line for line in lines if line)).strip()


class PDFExtractor:
    """Extract paragraphs from PDF files."""

    def __init__(self, pdf_path: Path):
        self.pdf_path = Path(pdf_path)
        if not self.pdf_path.exists():
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        self.doc = fitz.open(self.pdf_path)
        self.total_pages = len(self.doc)

    def extract_all(self) -> str:
        """
        Extract all text from the PDF, one paragraph per text block.

        Returns:
            Paragraphs separated by blank lines
        """
        paragraphs = []

        logger.info(f"Extracting text from {self.total_pages} pages...")

        for page_num in track(
            range(self.total_pages), description="Extracting", console=logger.console
        ):
            paragraphs.extend(self._page_paragraphs(page_num))

        return "\n\n".join(paragraphs)

    def _page_paragraphs(self, page_num: int) -> List[str]:
        page = self.doc[page_num]
        paragraphs = []

        # (x0, y0, x1, y1, text, block_no, block_type)
        for block in page.get_text("blocks", sort=True):
            if block[6] != 0:  # Image block
                continue

            text = _reflow(_fix_encoding(block[4]))

            # Standalone page numbers
            if not text or text.isdigit():
                continue
            paragraphs.append(text)

        return paragraphs

    def close(self) -> None:
        """Close the PDF document."""
        self.doc.close()

    def __enter__(self) -> "PDFExtractor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class DocxExtractor:
    """Extract paragraphs from DOCX files using python-docx."""

    def __init__(self, docx_path: Path):
        self.docx_path = Path(docx_path)
        if not self.docx_path.exists():
            raise FileNotFoundError(f"DOCX not found: {docx_path}")

        try:
            self.doc = docx.Document(self.docx_path)
        except Exception as e:
            raise RuntimeError(f"Failed to open DOCX file: {e}") from e

    def extract_all(self) -> str:
        logger.info(f"Extracting text from {len(self.doc.paragraphs)} paragraphs...")

        paragraphs = []
        for paragraph in self.doc.paragraphs:
            text = _reflow(_fix_encoding(paragraph.text))
            if text:
                paragraphs.append(text)

        return "\n\n".join(paragraphs)

    def close(self) -> None:
        """No-op for python-docx but kept for API consistency."""
        pass

    def __enter__(self) -> "DocxExtractor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def extract_file(path: Path) -> str:
    """
    Extract text from a supported file.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if the file type is not supported
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(
            f"Unsupported file type: {path.suffix or path.name} "
            f"(expected one of {', '.join(SUPPORTED_SUFFIXES)})"
        )
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix == ".pdf":
        with PDFExtractor(path) as extractor:
            text = extractor.extract_all()
    elif suffix == ".docx":
        with DocxExtractor(path) as extractor:
            text = extractor.extract_all()
    else:
        text = _fix_encoding(path.read_text(encoding="utf-8", errors="replace"))

    logger.success(f"Extracted {len(text):,} characters from {path.name}")
    return text

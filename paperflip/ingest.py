"""
Ingestion pipeline: extract text from an uploaded file, split it into
segments and store it as a document.
"""

from pathlib import Path
from typing import Optional

from paperflip.extract_text import extract_file
from paperflip.feed.segmenter import segment_text
from paperflip.store import database
from paperflip.store.database import Database, DocumentRecord
from paperflip.utils.config import config
from paperflip.utils import logger


class IngestError(Exception):
    """Raised when a file cannot be turned into a document."""
    pass


async def ingest_file(
    path: Path,
    db: Optional[Database] = None,
    document_id: Optional[str] = None,
) -> DocumentRecord:
    """
    Add a file to the library.

    Re-ingesting a file under the same id replaces its segments only if
    the text changed, otherwise the reading position is kept.

    Args:
        path: PDF, DOCX or TXT file
        db: Database to store into (process default if None)
        document_id: Key to store under; defaults to the file name

    Returns:
        The stored document record
    """
    path = Path(path)
    document_id = document_id or path.name

    logger.step(f"Extracting text from {path.name}", 1, 3)
    try:
        text = extract_file(path)
    except (ValueError, FileNotFoundError, RuntimeError) as e:
        raise IngestError(str(e)) from e

    logger.step("Segmenting text", 2, 3)
    segments = segment_text(text, config.max_segment_length)
    if not segments:
        raise IngestError(f"No readable text found in {path.name}")
    logger.info(f"Created {len(segments)} segments")

    logger.step(f"Saving {document_id}", 3, 3)
    record = await database.upsert_document(document_id, segments, db=db)

    logger.success(f"Added {document_id} ({record.total_segments} segments)")
    return record

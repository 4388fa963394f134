"""Turns a stored :class:`UploadPayload` into plain text for the chunker.

TEXT payloads pass through unchanged.  PDF payloads are base64-decoded and
read with PyMuPDF (``fitz``) page by page; pages are joined with a form
feed (``\\f``) so :class:`TextChunker` can attach page ranges to chunks.
Layout fidelity is not a goal here, only readable running text.
"""

from __future__ import annotations

import base64
import binascii

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from evidence_pipeline.models.source import UploadContentType, UploadPayload
from evidence_pipeline.utils.errors import ErrorKind, IngestionError

logger = structlog.get_logger(logger_name=__name__)

PAGE_SEPARATOR = "\f"


class TextExtractor:
    """Extracts text from upload payloads."""

    def extract(self, payload: UploadPayload) -> str:
        """Return the text content of *payload*.

        Raises
        ------
        IngestionError
            ``extraction-failed`` when the payload cannot be decoded or
            yields no text at all.
        """
        if payload.content_type == UploadContentType.PDF:
            text = self._extract_pdf(payload.data, payload.original_filename)
        else:
            text = payload.data

        if not text.strip():
            raise IngestionError(
                message="No text content could be extracted from the upload",
                kind=ErrorKind.EXTRACTION_FAILED,
                context={"filename": payload.original_filename},
            )
        return text

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(data: str, filename: str | None) -> str:
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise IngestionError(
                message="PDF upload is not valid base64",
                kind=ErrorKind.EXTRACTION_FAILED,
                context={"filename": filename},
            ) from exc

        try:
            doc = fitz.open(stream=raw, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 (wrapped and re-raised)
            logger.error("pdf_open_failed", filename=filename, error=str(exc))
            raise IngestionError(
                message=f"Could not open PDF: {exc}",
                kind=ErrorKind.EXTRACTION_FAILED,
                context={"filename": filename},
            ) from exc

        pages: list[str] = []
        try:
            for page in doc:
                pages.append(page.get_text("text").strip())
        finally:
            doc.close()

        if not any(pages):
            logger.warning("pdf_no_text_extracted", filename=filename, pages=len(pages))

        logger.info("pdf_extracted", filename=filename, pages=len(pages))
        return PAGE_SEPARATOR.join(pages)

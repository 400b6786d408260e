"""PDF text extraction and OCR fallback."""

import io
import logging
import os
import subprocess
import tempfile
from typing import Optional, Union

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from papercrate.errors import ContentError

logger = logging.getLogger(__name__)

# Extracted text shorter than this is treated as "no text layer"
MIN_TEXT_LENGTH = 50

OCR_COMMAND = "ocrmypdf"
OCR_TIMEOUT = 600


class OcrError(Exception):
    """The OCR command ran but did not complete successfully."""


def extract_text_from_pdf(pdf_content: Union[bytes, io.BytesIO]) -> str:
    """
    Extract the embedded text layer from a PDF file.

    Args:
        pdf_content: PDF file content as bytes or BytesIO

    Returns:
        Extracted text, one block per page

    Raises:
        ContentError: If PDF cannot be parsed or contains no text
    """
    try:
        # Convert bytes to BytesIO if needed
        if isinstance(pdf_content, bytes):
            pdf_file = io.BytesIO(pdf_content)
        else:
            pdf_file = pdf_content

        reader = PdfReader(pdf_file)

        text_parts = []
        for page_num, page in enumerate(reader.pages, start=1):
            try:
                text = page.extract_text() or ""
            except (PyPdfError, ValueError, KeyError) as e:
                logger.warning(f"Failed to extract text from page {page_num}: {e}")
                continue
            if text.strip():
                text_parts.append(text)
                logger.debug(f"Extracted {len(text)} characters from page {page_num}")
    except (PyPdfError, ValueError, OSError) as e:
        logger.error(f"Failed to parse PDF: {e}")
        raise ContentError(f"failed to parse PDF: {e}") from e

    if not text_parts:
        raise ContentError("no text could be extracted from PDF")

    full_text = "\n\n".join(text_parts)
    logger.info(f"Extracted {len(full_text)} characters from {len(reader.pages)} pages")
    return full_text


def has_enough_text(text: Optional[str]) -> bool:
    """Whether extracted text clears the minimum length threshold."""
    return text is not None and len(text.strip()) >= MIN_TEXT_LENGTH


def run_ocr(pdf_content: bytes) -> Optional[str]:
    """
    Run ocrmypdf over a PDF and return the sidecar text.

    Args:
        pdf_content: PDF file content

    Returns:
        Recognised text, or None if ocrmypdf is not installed or the
        result is shorter than MIN_TEXT_LENGTH

    Raises:
        OcrError: If ocrmypdf exits with an error
    """
    with tempfile.TemporaryDirectory(prefix="papercrate-ocr-") as workdir:
        input_path = os.path.join(workdir, "input.pdf")
        output_path = os.path.join(workdir, "output.pdf")
        sidecar_path = os.path.join(workdir, "sidecar.txt")

        with open(input_path, "wb") as f:
            f.write(pdf_content)

        try:
            result = subprocess.run(
                [OCR_COMMAND, "--sidecar", sidecar_path, "--skip-text", input_path, output_path],
                capture_output=True,
                timeout=OCR_TIMEOUT,
            )
        except FileNotFoundError:
            logger.warning(f"{OCR_COMMAND} not installed; cannot perform OCR")
            return None
        except subprocess.TimeoutExpired as e:
            raise OcrError(f"{OCR_COMMAND} timed out after {OCR_TIMEOUT}s") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise OcrError(f"{OCR_COMMAND} failed: exit={result.returncode} stderr={stderr[-2000:]}")

        with open(sidecar_path, encoding="utf-8", errors="replace") as f:
            text = f.read()

    if not has_enough_text(text):
        return None
    return text

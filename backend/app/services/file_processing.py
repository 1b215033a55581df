"""
PDF toolkit (page count, page extraction, merge) and image checks.

Everything here is blocking; async callers go through asyncio.to_thread.
"""

import os
import re
from typing import List, Sequence

import fitz
from PIL import Image

from app.config import logger
from app.errors import InvalidInput, PdfToolkitError

_PAGE_SUFFIX = re.compile(r"_page_(\d+)\.pdf$")


def page_number_from_name(path: str) -> int:
    """Page number encoded in an extracted file name, or 0 if there is none."""
    match = _PAGE_SUFFIX.search(os.path.basename(path))
    return int(match.group(1)) if match else 0


class PdfToolkit:
    """Page-count, page-range extraction and merge primitives over PDF files."""

    def page_count(self, path: str) -> int:
        try:
            with fitz.open(path) as doc:
                if not doc.is_pdf:
                    raise PdfToolkitError(f"Not a PDF document: {os.path.basename(path)}")
                return doc.page_count
        except PdfToolkitError:
            raise
        except Exception as e:
            raise PdfToolkitError(f"Cannot read PDF {os.path.basename(path)}: {e}") from e

    def extract_page(self, src: str, page: int, dest: str) -> str:
        """Write 1-indexed ``page`` of ``src`` as a single-page PDF at ``dest``."""
        try:
            with fitz.open(src) as doc:
                if page < 1 or page > doc.page_count:
                    raise PdfToolkitError(f"Page {page} out of range (1-{doc.page_count})")
                out = fitz.open()
                try:
                    out.insert_pdf(doc, from_page=page - 1, to_page=page - 1)
                    out.save(dest)
                finally:
                    out.close()
        except PdfToolkitError:
            raise
        except Exception as e:
            raise PdfToolkitError(f"Failed to extract page {page}: {e}") from e
        return dest

    def extract_pages(self, src: str, out_dir: str, pages: Sequence[int]) -> List[str]:
        """
        Extract ``pages`` into ``out_dir``, one file per page named
        ``<stem>_page_<n>.pdf``. Returns the written paths in page order.
        """
        if not pages:
            raise PdfToolkitError("No pages requested")
        stem = os.path.splitext(os.path.basename(src))[0]
        written = []
        for page in pages:
            dest = os.path.join(out_dir, f"{stem}_page_{page}.pdf")
            written.append(self.extract_page(src, page, dest))
        return written

    def merge(self, files: Sequence[str], dest: str) -> str:
        """Concatenate ``files`` in the given order into ``dest``."""
        if not files:
            raise PdfToolkitError("Nothing to merge")
        out = fitz.open()
        try:
            for path in files:
                with fitz.open(path) as part:
                    out.insert_pdf(part)
            out.save(dest)
        except Exception as e:
            raise PdfToolkitError(f"Failed to merge {len(files)} files: {e}") from e
        finally:
            out.close()
        return dest


def validate_pdf_file(path: str, toolkit: PdfToolkit = None) -> int:
    """
    Check that ``path`` is an existing, non-empty, readable PDF with pages.
    Returns its page count.
    """
    if not path:
        raise InvalidInput("PDF file path is empty")
    if not os.path.isfile(path):
        raise InvalidInput(f"PDF file does not exist: {os.path.basename(path)}")
    if os.path.getsize(path) == 0:
        raise InvalidInput(f"PDF file is empty: {os.path.basename(path)}")

    toolkit = toolkit or PdfToolkit()
    try:
        count = toolkit.page_count(path)
    except PdfToolkitError as e:
        raise InvalidInput(f"Invalid PDF file: {e.message}") from e
    if count <= 0:
        raise InvalidInput("PDF file has no pages")
    return count


def validate_image_file(path: str) -> str:
    """Check that ``path`` decodes as an image. Returns the PIL format name."""
    try:
        with Image.open(path) as img:
            img.verify()
            fmt = img.format
    except Exception as e:
        logger.error(f"Error validating image {os.path.basename(path)}: {e}")
        raise InvalidInput(f"Invalid image file: {os.path.basename(path)}") from e
    return fmt or "unknown"

"""
PDF splitting - one sub-document per group of ``pages_per_student`` pages.

Layout on disk:
    <output_dir>/<stem>_<timestamp>/student_<n>.pdf

Each unit is built by a bulk range extraction into a temporary directory. If
that fails the unit is rebuilt page by page and merged; if the merge fails the
first extracted page is kept. Any unit that cannot be produced aborts the whole
split, so callers always get a complete, index-aligned list.
"""

import glob
import math
import os
import shutil
import tempfile
from datetime import datetime
from typing import List, Optional

from app.config import logger
from app.errors import (
    EmptyOutput,
    ExtractionFailed,
    HomeworkError,
    InvalidInput,
    PageCountMismatch,
    PdfToolkitError,
)
from app.models.grading import SplitUnit
from app.services.file_processing import PdfToolkit, page_number_from_name, validate_pdf_file


def compute_split_units(source_path: str, total_pages: int, pages_per_student: int,
                        session_dir: str) -> List[SplitUnit]:
    """Contiguous page ranges covering [1, total_pages], in page order."""
    if pages_per_student <= 0:
        raise InvalidInput(f"pages_per_student must be positive, got {pages_per_student}")
    if total_pages <= 0:
        raise InvalidInput("PDF file has no pages")

    num_units = math.ceil(total_pages / pages_per_student)
    units = []
    for i in range(num_units):
        units.append(SplitUnit(
            source_path=source_path,
            index=i,
            start_page=i * pages_per_student + 1,
            end_page=min((i + 1) * pages_per_student, total_pages),
            output_path=os.path.join(session_dir, f"student_{i + 1}.pdf"),
        ))
    return units


def create_session_dir(output_dir: str, source_path: str) -> str:
    """Create a directory owned by exactly one split invocation."""
    stem = os.path.splitext(os.path.basename(source_path))[0]
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    base = os.path.join(output_dir, f"{stem}_{timestamp}")

    os.makedirs(output_dir, exist_ok=True)
    candidate = base
    suffix = 1
    while True:
        try:
            os.makedirs(candidate)
            return candidate
        except FileExistsError:
            suffix += 1
            candidate = f"{base}_{suffix}"


def sort_files_by_mod_time(files: List[str]) -> List[str]:
    """Sort in place by modification time, page number breaking ties."""
    def _key(path):
        try:
            mtime = os.stat(path).st_mtime_ns
        except OSError:
            mtime = 0
        return (mtime, page_number_from_name(path))

    files.sort(key=_key)
    return files


def _copy_or_merge(files: List[str], dest: str, toolkit: PdfToolkit, unit: SplitUnit) -> None:
    if len(files) == 1:
        try:
            shutil.copyfile(files[0], dest)
        except OSError as e:
            raise ExtractionFailed(f"Failed to copy extracted pages for student {unit.index + 1}: {e}") from e
        return

    logger.info(f"Merging {len(files)} files into {os.path.basename(dest)}")
    try:
        toolkit.merge(files, dest)
    except PdfToolkitError as e:
        logger.error(f"Merge failed for student {unit.index + 1}: {e}")
        try:
            shutil.copyfile(files[0], dest)
        except OSError as copy_err:
            raise ExtractionFailed(f"Unable to save any pages for student {unit.index + 1}: {copy_err}") from copy_err
        logger.warning(
            f"⚠️ Student {unit.index + 1}: merge failed, kept only the first of {len(files)} files "
            f"(pages {unit.start_page}-{unit.end_page} partially lost)"
        )


def _extract_page_by_page(unit: SplitUnit, toolkit: PdfToolkit) -> None:
    scratch_dir = tempfile.mkdtemp(prefix="pdf-pages-")
    try:
        page_files = []
        for page in unit.pages:
            dest = os.path.join(scratch_dir, f"page_{page}.pdf")
            try:
                toolkit.extract_page(unit.source_path, page, dest)
            except PdfToolkitError as e:
                logger.error(f"Failed to extract page {page}: {e}")
                continue
            if os.path.isfile(dest):
                page_files.append(dest)
            else:
                logger.warning(f"Extracted page {page} not found on disk, skipping")

        if not page_files:
            raise ExtractionFailed(
                f"Could not extract any page in {unit.start_page}-{unit.end_page} for student {unit.index + 1}"
            )
        _copy_or_merge(page_files, unit.output_path, toolkit, unit)
    finally:
        shutil.rmtree(scratch_dir, ignore_errors=True)


def _build_unit(unit: SplitUnit, toolkit: PdfToolkit, session_dir: str) -> None:
    temp_dir = os.path.join(session_dir, f"temp_extract_{unit.index + 1}")
    os.makedirs(temp_dir, exist_ok=True)
    try:
        try:
            toolkit.extract_pages(unit.source_path, temp_dir, unit.pages)
        except PdfToolkitError as e:
            logger.error(f"Bulk extraction of pages {unit.start_page}-{unit.end_page} failed: {e}")
            logger.info("Falling back to page-by-page extraction...")
            _extract_page_by_page(unit, toolkit)
            return

        extracted = glob.glob(os.path.join(temp_dir, "*.pdf"))
        if not extracted:
            raise ExtractionFailed(f"No extracted PDF files found for student {unit.index + 1}")
        sort_files_by_mod_time(extracted)
        _copy_or_merge(extracted, unit.output_path, toolkit, unit)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _verify_unit(unit: SplitUnit, toolkit: PdfToolkit, strict_page_count: bool) -> None:
    path = unit.output_path
    if not os.path.isfile(path):
        raise EmptyOutput(f"Output file was not created: {os.path.basename(path)}")
    size = os.path.getsize(path)
    if size == 0:
        raise EmptyOutput(f"Output file is empty: {os.path.basename(path)}")
    logger.debug(f"Output file created: {path}, {size} bytes")

    try:
        actual = toolkit.page_count(path)
    except PdfToolkitError as e:
        logger.warning(f"Could not count pages of {os.path.basename(path)}: {e}")
        return

    if actual != unit.page_count:
        message = (
            f"Student {unit.index + 1}: extracted {actual} pages, expected {unit.page_count} "
            f"(pages {unit.start_page}-{unit.end_page})"
        )
        if strict_page_count:
            raise PageCountMismatch(message)
        logger.warning(f"⚠️ Page count mismatch. {message}")


def split_pdf(input_file: str, pages_per_student: int, output_dir: str,
              toolkit: Optional[PdfToolkit] = None, strict_page_count: bool = False) -> List[str]:
    """
    Split ``input_file`` into ``ceil(total / pages_per_student)`` PDFs.

    Returns the output paths in page order. Raises InvalidInput for bad
    arguments, ExtractionFailed / EmptyOutput when a unit cannot be produced,
    and PageCountMismatch when ``strict_page_count`` is set and a unit's page
    count is off. Nothing is left on disk when the split fails.
    """
    logger.info(f"Splitting PDF {input_file}, {pages_per_student} pages per student")
    if pages_per_student <= 0:
        raise InvalidInput(f"pages_per_student must be positive, got {pages_per_student}")

    toolkit = toolkit or PdfToolkit()
    total_pages = validate_pdf_file(input_file, toolkit)

    try:
        session_dir = create_session_dir(output_dir, input_file)
    except OSError as e:
        raise ExtractionFailed(f"Failed to create split session directory: {e}") from e
    logger.info(f"PDF has {total_pages} pages, session directory: {session_dir}")

    units = compute_split_units(input_file, total_pages, pages_per_student, session_dir)
    output_files = []
    try:
        for unit in units:
            logger.info(
                f"Student {unit.index + 1}: pages {unit.start_page}-{unit.end_page} -> "
                f"{os.path.basename(unit.output_path)}"
            )
            _build_unit(unit, toolkit, session_dir)
            _verify_unit(unit, toolkit, strict_page_count)
            output_files.append(unit.output_path)
    except HomeworkError:
        shutil.rmtree(session_dir, ignore_errors=True)
        raise
    except OSError as e:
        shutil.rmtree(session_dir, ignore_errors=True)
        raise ExtractionFailed(f"Filesystem error while splitting: {e}") from e

    logger.info(f"✅ PDF split complete: {len(output_files)} files in {session_dir}")
    return output_files

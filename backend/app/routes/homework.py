"""Homework routes - asynchronous upload and synchronous marking."""

import asyncio
import os
import tempfile

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from app.config import Settings, logger
from app.deps import get_app_settings, get_invoker, get_pipeline, get_task_queue
from app.errors import HomeworkError, InvalidInput
from app.models.task import HomeworkTask
from app.services.grading import GradingInvoker
from app.services.homework import HomeworkPipeline, mark_homework
from app.services.task_queue import TaskQueue, generate_task_id
from app.utils.file_utils import build_upload_path, get_extension, is_image_file, write_upload
from app.utils.hashing import get_bytes_hash, get_submission_key

router = APIRouter(tags=["homework"])


@router.post("/upload/homework")
async def upload_homework(
    file: UploadFile = File(...),
    homework_type: str = Form("general", alias="type"),
    layout: str = Form("single"),
    pages_per_student: int = Form(1, alias="pagesPerStudent"),
    settings: Settings = Depends(get_app_settings),
    queue: TaskQueue = Depends(get_task_queue),
    pipeline: HomeworkPipeline = Depends(get_pipeline),
):
    """Save an uploaded homework file and queue it for grading."""
    homework_type = homework_type or "general"
    layout = layout or "single"
    if pages_per_student <= 0:
        pages_per_student = 1

    data = await file.read()
    logger.info(f"Received upload {file.filename} ({len(data)} bytes): type={homework_type}, "
                f"layout={layout}, pagesPerStudent={pages_per_student}")

    if len(data) > settings.max_upload_bytes:
        size_mb = len(data) / (1024 * 1024)
        raise HTTPException(
            status_code=400,
            detail=f"File too large ({size_mb:.1f}MB). Maximum size is {settings.max_upload_mb}MB."
        )

    submission_key = get_submission_key(get_bytes_hash(data), homework_type, layout, pages_per_student)
    try:
        file_path = build_upload_path(data, file.filename, settings.upload_root)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.message)

    message = f"Homework {file.filename} queued for grading"
    task = HomeworkTask(
        id=generate_task_id(),
        file_path=file_path,
        homework_type=homework_type,
        layout=layout,
        pages_per_student=pages_per_student if get_extension(file_path) == ".pdf" else 0,
        params={
            "type": "homework_upload",
            "message": message,
            "submission_key": submission_key,
            "filename": file.filename,
        },
    )
    existing = queue.register_if_absent(task, submission_key=submission_key)
    if existing is not None:
        logger.info(f"Duplicate upload of {file.filename}, returning in-flight task {existing.id}")
        return {
            "success": True,
            "task_id": existing.id,
            "status": existing.status.value,
            "message": "Identical homework is already being processed",
        }

    try:
        await asyncio.to_thread(write_upload, data, file_path)
    except OSError as e:
        logger.error(f"Failed to save upload {file.filename}: {e}", exc_info=True)
        queue.fail_task(task.id, "Failed to save uploaded file")
        raise HTTPException(status_code=500, detail="Failed to save uploaded file")

    await queue.dispatch(task.id, pipeline.process)

    return {
        "success": True,
        "task_id": task.id,
        "status": task.status.value,
        "message": message,
    }


@router.post("/marking/homework")
async def mark_homework_image(
    homework: UploadFile = File(...),
    layout: str = Form("single"),
    homework_type: str = Form("general", alias="type"),
    settings: Settings = Depends(get_app_settings),
    invoker: GradingInvoker = Depends(get_invoker),
):
    """Grade one homework image in the request and return the result."""
    suffix = get_extension(homework.filename) or ".jpg"
    if not is_image_file(f"x{suffix}"):
        return JSONResponse(status_code=400, content={"success": False, "error": "Please upload a homework image"})

    data = await homework.read()
    if not data:
        return JSONResponse(status_code=400, content={"success": False, "error": "Please upload a homework image"})
    if len(data) > settings.max_upload_bytes:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"File too large. Maximum size is {settings.max_upload_mb}MB."},
        )

    fd, temp_path = tempfile.mkstemp(prefix="homework-", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        result = await mark_homework(invoker, temp_path, homework_type or "general", layout or "single")
    except InvalidInput as e:
        return JSONResponse(status_code=400, content={"success": False, "error": e.message})
    except HomeworkError as e:
        logger.error(f"Marking {homework.filename} failed: {e.message}")
        return JSONResponse(status_code=500, content={"success": False, "error": e.message})
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)

    return {"success": True, "result": result.model_dump(by_alias=True, exclude_none=True)}

"""
FastAPI dependencies - shared services stored on app.state by the lifespan.
"""

from fastapi import Request, HTTPException

from .config import Settings
from .services.grading import GradingInvoker
from .services.homework import HomeworkPipeline
from .services.task_queue import TaskQueue


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Service is starting up, try again shortly")
    return value


def get_app_settings(request: Request) -> Settings:
    return _state(request, "settings")


def get_task_queue(request: Request) -> TaskQueue:
    return _state(request, "task_queue")


def get_invoker(request: Request) -> GradingInvoker:
    return _state(request, "invoker")


def get_pipeline(request: Request) -> HomeworkPipeline:
    return _state(request, "pipeline")

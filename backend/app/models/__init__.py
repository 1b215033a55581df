"""Pydantic models for the homework grader"""

from .task import TaskStatus, HomeworkTask
from .grading import HomeworkAnswer, GradingResult, SplitUnit

"""
Task API Endpoints
Lists saved tasks and records completions, which feed completion-habit learning.
"""
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from voice_actions.dependencies.services import (
    get_background_queue,
    get_item_repositories,
    get_pattern_learner,
)
from voice_actions.models import SavedTask
from voice_actions.schemas import CompleteTaskResponse
from voice_actions.services.background import BackgroundTaskQueue
from voice_actions.services.pattern_learning import PatternLearner
from voice_actions.services.persistence import ItemRepositories

logger = logging.getLogger("voice_actions.tasks_api")

router = APIRouter(prefix="/v1/tasks", tags=["tasks"])


class TaskListResponse(BaseModel):
    user_id: str
    tasks: List[SavedTask]


@router.get("", response_model=TaskListResponse, response_model_by_alias=False)
def list_tasks(
    user_id: str = Query(..., description="User identifier"),
    repos: ItemRepositories = Depends(get_item_repositories),
) -> TaskListResponse:
    return TaskListResponse(user_id=user_id, tasks=repos.tasks.list_for_user(user_id))


@router.post("/{task_id}/complete", response_model=CompleteTaskResponse)
async def complete_task(
    task_id: str,
    user_id: str = Query(..., description="User identifier"),
    repos: ItemRepositories = Depends(get_item_repositories),
    learner: PatternLearner = Depends(get_pattern_learner),
    queue: BackgroundTaskQueue = Depends(get_background_queue),
) -> CompleteTaskResponse:
    """Mark a task done and schedule pattern learning for the completed task."""
    task = repos.tasks.mark_completed(user_id, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    scheduled = queue.submit("learn_from_task", learner.learn_from_task, user_id, task, item_id=task.id)
    logger.info("[tasks.api.complete] user_id=%s task_id=%s learning_scheduled=%s", user_id, task_id, scheduled)
    return CompleteTaskResponse(task_id=task.id, completed_at=task.completed_at, learning_scheduled=scheduled)

"""任务路由

GET /api/tasks: 规范任务列表
POST /api/tasks: 新增（201）
GET /api/tasks/{task_id}: 单个任务
PATCH /api/tasks/{task_id}: 稀疏更新（未出现的字段不修改，显式 null 表示清空）
DELETE /api/tasks/{task_id}: 删除（204）
POST /api/tasks/{task_id}/toggle: 切换完成状态
POST /api/tasks/refresh: 重新拉取远端
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.responses import Response
from taskify.core.models import Task, TaskDraft, TaskPatch

from ..deps import get_reconciler
from .errors import error_response, task_not_found

router = APIRouter()


class TaskListResponse(BaseModel):
    """任务列表响应"""

    tasks: list[Task]


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(reconciler=Depends(get_reconciler)):
    return TaskListResponse(tasks=reconciler.tasks)


@router.post("/api/tasks", response_model=Task, status_code=201)
async def add_task(body: TaskDraft, reconciler=Depends(get_reconciler)):
    task = await reconciler.add(body)
    if task is None:
        return error_response(422, "INVALID_TASK", "Task draft failed validation")
    return task


@router.post("/api/tasks/refresh", response_model=TaskListResponse)
async def refresh_tasks(reconciler=Depends(get_reconciler)):
    return TaskListResponse(tasks=await reconciler.refresh())


@router.get("/api/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str, reconciler=Depends(get_reconciler)):
    task = reconciler.get_task(task_id)
    if task is None:
        return task_not_found(task_id)
    return task


@router.patch("/api/tasks/{task_id}", response_model=Task)
async def update_task(task_id: str, body: TaskPatch, reconciler=Depends(get_reconciler)):
    if reconciler.get_task(task_id) is None:
        return task_not_found(task_id)
    task = await reconciler.update(task_id, body)
    if task is None:
        # 更新在途时任务被删除
        return task_not_found(task_id)
    return task


@router.delete("/api/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, reconciler=Depends(get_reconciler)):
    if not await reconciler.delete(task_id):
        return task_not_found(task_id)
    return Response(status_code=204)


@router.post("/api/tasks/{task_id}/toggle", response_model=Task)
async def toggle_task(task_id: str, reconciler=Depends(get_reconciler)):
    task = await reconciler.toggle_complete(task_id)
    if task is None:
        return task_not_found(task_id)
    return task

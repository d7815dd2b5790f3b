from fastapi import APIRouter, HTTPException

from todosync.exceptions import AuthenticationError
from todosync.models.tasks import (
    CreateTaskRequest,
    Task,
    TaskListResponse,
    TaskStatus,
    UpdateTaskRequest,
)
from todosync.services.tasks import TaskStore, get_task_store

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _signed_in_store() -> TaskStore:
    store = get_task_store()
    if store.user_id is None:
        raise AuthenticationError("Not signed in. POST /auth/signin first.")
    return store


def _known_task(store: TaskStore, task_id: str) -> Task:
    task = store.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@router.get("")
def list_tasks() -> TaskListResponse:
    store = _signed_in_store()
    status = store.check_listener()
    tasks = store.tasks.value
    return TaskListResponse(tasks=tasks, status=status, result_count=len(tasks))


@router.get("/status")
def task_status() -> TaskStatus:
    return get_task_store().check_listener()


@router.post("")
def add_task(request: CreateTaskRequest) -> TaskStatus:
    return _signed_in_store().add(request.title, request.description)


@router.post("/refresh")
def refresh_tasks() -> TaskStatus:
    store = _signed_in_store()
    store.refresh()
    return store.status.value


@router.patch("/{task_id}")
def update_task(task_id: str, request: UpdateTaskRequest) -> TaskStatus:
    store = _signed_in_store()
    task = _known_task(store, task_id)
    changes = request.model_dump(exclude_none=True)
    return store.update(task.model_copy(update=changes))


@router.post("/{task_id}/toggle")
def toggle_task(task_id: str) -> TaskStatus:
    store = _signed_in_store()
    return store.toggle(_known_task(store, task_id))


@router.delete("/{task_id}")
def delete_task(task_id: str) -> TaskStatus:
    return _signed_in_store().delete(task_id)

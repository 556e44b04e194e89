"""
Background task status endpoints.
"""

from fastapi import APIRouter, Depends

from dubsync.api.deps import get_services
from dubsync.schemas.tasks import ForceReleaseRequest, TaskStatusView
from dubsync.services.container import Services

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


@router.get("", response_model=list[TaskStatusView], summary="List task statuses")
def list_tasks(services: Services = Depends(get_services)) -> list[TaskStatusView]:
    return services.registry.get_all_statuses()


@router.get("/{task_name}", response_model=TaskStatusView, summary="Get task status")
def get_task(task_name: str, services: Services = Depends(get_services)) -> TaskStatusView:
    """
    Get the status of one background task.

    Raises:
        NotFoundError: Unknown task name (404)
    """
    return services.registry.get_status(task_name)


@router.post("/{task_name}/release", response_model=TaskStatusView, summary="Force-release a task")
def release_task(
    task_name: str,
    request: ForceReleaseRequest | None = None,
    services: Services = Depends(get_services),
) -> TaskStatusView:
    """
    Mark a stuck run failed so the next trigger can acquire the lease.

    Args:
        task_name: Task to release
        request: Reason recorded as the task's last error
    """
    reason = request.reason if request else ForceReleaseRequest().reason
    return services.registry.force_release(task_name, reason)

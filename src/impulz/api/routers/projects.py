from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.models import DeleteResult, NamePayload, Project
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo
from ...infrastructure.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _backend_error(exc: RepositoryError) -> HTTPException:
    logger.error("projects_backend_error", extra={"operation": exc.operation})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.operation)


@router.get("", response_model=List[Project])
def list_projects(repo: CoachingRepository = Depends(get_repo)):
    try:
        return repo.list_projects()
    except RepositoryError as exc:
        raise _backend_error(exc) from exc


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(payload: NamePayload, repo: CoachingRepository = Depends(get_repo)):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name is required")
    try:
        return repo.create_project(payload.name)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc


@router.patch("/{project_id}", response_model=Project)
def rename_project(project_id: str, payload: NamePayload, repo: CoachingRepository = Depends(get_repo)):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name is required")
    try:
        proj = repo.rename_project(project_id, payload.name)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if not proj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return proj


@router.delete("/{project_id}", response_model=DeleteResult)
def delete_project(
    project_id: str,
    repo: CoachingRepository = Depends(get_repo),
    store: SessionStore = Depends(get_session_store),
):
    try:
        removed = repo.delete_project(project_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    store.clear(project_id)
    return DeleteResult()

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...domain.models import DeleteResult, NamePayload, Topic, TopicCreate
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo

router = APIRouter(prefix="/topics", tags=["topics"])


@router.get("", response_model=List[Topic])
def list_topics(project_id: Optional[str] = Query(None), repo: CoachingRepository = Depends(get_repo)):
    try:
        return repo.list_topics(project_id)
    except RepositoryError as exc:
        raise HTTPException(status_code=500, detail=exc.operation) from exc


@router.post("", response_model=Topic, status_code=status.HTTP_201_CREATED)
def create_topic(payload: TopicCreate, repo: CoachingRepository = Depends(get_repo)):
    if not payload.project_id:
        raise HTTPException(status_code=400, detail="Project ID is required")
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Topic name is required")
    try:
        return repo.create_topic(payload.project_id, payload.name)
    except RepositoryError as exc:
        raise HTTPException(status_code=500, detail=exc.operation) from exc


@router.patch("/{topic_id}", response_model=Topic)
def rename_topic(topic_id: str, payload: NamePayload, repo: CoachingRepository = Depends(get_repo)):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Topic name is required")
    try:
        topic = repo.rename_topic(topic_id, payload.name)
    except RepositoryError as exc:
        raise HTTPException(status_code=500, detail=exc.operation) from exc
    if not topic:
        raise HTTPException(status_code=404, detail="Topic not found")
    return topic


@router.delete("/{topic_id}", response_model=DeleteResult)
def delete_topic(topic_id: str, repo: CoachingRepository = Depends(get_repo)):
    try:
        removed = repo.delete_topic(topic_id)
    except RepositoryError as exc:
        raise HTTPException(status_code=500, detail=exc.operation) from exc
    if not removed:
        raise HTTPException(status_code=404, detail="Topic not found")
    return DeleteResult()

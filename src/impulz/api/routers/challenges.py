from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...domain.models import DOCUMENT_TYPES, ChallengeCreate, ChallengeList, ChallengeResult
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/challenges", tags=["challenges"])


@router.get("", response_model=ChallengeList)
def list_challenges(projectId: Optional[str] = Query(None), repo: CoachingRepository = Depends(get_repo)):
    if not projectId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="projectId is required")
    try:
        return ChallengeList(challenges=repo.list_challenges(projectId))
    except RepositoryError as exc:
        logger.error("challenges_backend_error", extra={"operation": exc.operation})
        raise HTTPException(status_code=500, detail=exc.operation) from exc


@router.post("", response_model=ChallengeResult)
def create_challenge(payload: ChallengeCreate, repo: CoachingRepository = Depends(get_repo)):
    if not (payload.projectId and payload.documentType and payload.title and payload.content):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: projectId, documentType, title, content",
        )
    if payload.documentType not in DOCUMENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid documentType. Must be one of: {', '.join(DOCUMENT_TYPES)}",
        )
    try:
        challenge = repo.create_challenge(payload.projectId, payload.documentType, payload.title, payload.content)
    except RepositoryError as exc:
        logger.error("challenges_backend_error", extra={"operation": exc.operation})
        raise HTTPException(status_code=500, detail=exc.operation) from exc
    return ChallengeResult(challenge=challenge)


@router.post("/{challenge_id}/validate", response_model=ChallengeResult)
def validate_challenge(challenge_id: str, repo: CoachingRepository = Depends(get_repo)):
    try:
        challenge = repo.validate_challenge(challenge_id)
    except RepositoryError as exc:
        logger.error("challenges_backend_error", extra={"operation": exc.operation})
        raise HTTPException(status_code=500, detail=exc.operation) from exc
    if not challenge:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found")
    return ChallengeResult(challenge=challenge)

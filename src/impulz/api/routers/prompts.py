from __future__ import annotations

from fastapi import APIRouter, Depends

from ...domain.models import DeleteResult
from ...services.prompt_source import NotionPromptSource, get_prompt_source

router = APIRouter(prefix="/prompts", tags=["prompts"])


@router.delete("/cache", response_model=DeleteResult)
def clear_prompt_cache(source: NotionPromptSource = Depends(get_prompt_source)):
    source.clear_cache()
    return DeleteResult()

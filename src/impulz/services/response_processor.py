from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from ..infrastructure.session_store import SessionStore
from ..observability.metrics import MALFORMED_TAGS
from .tag_protocol import MalformedTagError, parse_memory_update, parse_question_backlog, strip_memory_updates

logger = logging.getLogger(__name__)


@dataclass
class ProcessedResponse:
    clean_text: str
    memory_updated: bool = False
    backlog_updated: bool = False
    errors: List[MalformedTagError] = field(default_factory=list)


def _reject(err: MalformedTagError, project_id: str, result: ProcessedResponse) -> None:
    logger.warning(
        "llm_tag_rejected",
        extra={"project_id": project_id, "tag": err.tag, "kind": err.kind.value, "detail": err.detail},
    )
    MALFORMED_TAGS.labels(tag=err.tag).inc()
    result.errors.append(err)


def process_response(store: SessionStore, project_id: str, response: str) -> ProcessedResponse:
    """Apply the memory and backlog tags of a finished reply to the project session.

    A tag whose payload cannot be decoded is rejected on its own; the other tag
    still applies.
    """
    result = ProcessedResponse(clean_text=strip_memory_updates(response))

    try:
        patch = parse_memory_update(response)
    except MalformedTagError as err:
        _reject(err, project_id, result)
        patch = None
    if patch is not None and not patch.is_empty():
        store.apply_memory_patch(project_id, patch)
        result.memory_updated = True
        logger.info("memory_updated", extra={"project_id": project_id, "patch": patch.model_dump(exclude_none=True)})

    try:
        backlog = parse_question_backlog(response)
    except MalformedTagError as err:
        _reject(err, project_id, result)
        backlog = None
    if backlog is not None:
        store.replace_backlog(project_id, backlog)
        result.backlog_updated = True
        logger.info("backlog_updated", extra={"project_id": project_id, "count": len(backlog)})

    return result

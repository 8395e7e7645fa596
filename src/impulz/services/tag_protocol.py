from __future__ import annotations

import enum
import json
import re
from typing import List, Optional

from pydantic import ValidationError

from ..domain.memory_models import MemoryPatch
from .memory import expand_dot_paths


MEMORY_UPDATE_RE = re.compile(r"<memory_update>([\s\S]*?)</memory_update>")
QUESTION_BACKLOG_RE = re.compile(r"<question_backlog>([\s\S]*?)</question_backlog>")

MEMORY_OPEN = "<memory_update>"
MEMORY_CLOSE = "</memory_update>"


class ErrorKind(str, enum.Enum):
    MALFORMED_LLM_TAG = "malformed_llm_tag"


class MalformedTagError(ValueError):
    """A tag was present in the model output but its payload could not be decoded."""

    kind = ErrorKind.MALFORMED_LLM_TAG

    def __init__(self, tag: str, detail: str) -> None:
        super().__init__(f"{tag}: {detail}")
        self.tag = tag
        self.detail = detail


def parse_memory_update(text: str) -> Optional[MemoryPatch]:
    """Decode the first ``<memory_update>`` block of ``text``.

    Returns None when there is no block. Raises MalformedTagError when the
    payload is not a JSON object of dot-path keys matching the memory shape.
    """
    match = MEMORY_UPDATE_RE.search(text or "")
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise MalformedTagError("memory_update", f"invalid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise MalformedTagError("memory_update", "payload is not an object")
    try:
        return MemoryPatch.model_validate(expand_dot_paths(payload))
    except ValidationError as exc:
        raise MalformedTagError("memory_update", f"unexpected value types ({exc.error_count()} errors)") from exc


def parse_question_backlog(text: str) -> Optional[List[str]]:
    match = QUESTION_BACKLOG_RE.search(text or "")
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise MalformedTagError("question_backlog", f"invalid JSON ({exc.msg})") from exc
    if not isinstance(payload, list) or not all(isinstance(q, str) for q in payload):
        raise MalformedTagError("question_backlog", "payload is not a list of strings")
    return [q.strip() for q in payload if q.strip()]


def strip_memory_updates(text: str) -> str:
    return MEMORY_UPDATE_RE.sub("", text or "").strip()


class MemoryTagFilter:
    """Removes ``<memory_update>`` blocks from a stream of text chunks.

    Text that might be the start of a tag is held back until the next chunk
    decides it. Call ``flush`` once the stream ends.
    """

    def __init__(self) -> None:
        self._buf = ""
        self._inside = False

    def feed(self, chunk: str) -> str:
        self._buf += chunk
        out: List[str] = []
        while self._buf:
            if self._inside:
                end = self._buf.find(MEMORY_CLOSE)
                if end < 0:
                    # keep a possible partial closing tag only
                    self._buf = self._buf[-(len(MEMORY_CLOSE) - 1):]
                    break
                self._buf = self._buf[end + len(MEMORY_CLOSE):]
                self._inside = False
                continue
            start = self._buf.find(MEMORY_OPEN)
            if start >= 0:
                out.append(self._buf[:start])
                self._buf = self._buf[start + len(MEMORY_OPEN):]
                self._inside = True
                continue
            keep = _partial_suffix(self._buf, MEMORY_OPEN)
            if keep:
                out.append(self._buf[:-keep])
                self._buf = self._buf[-keep:]
            else:
                out.append(self._buf)
                self._buf = ""
            break
        return "".join(out)

    def flush(self) -> str:
        rest = "" if self._inside else self._buf
        self._buf = ""
        self._inside = False
        return rest


def _partial_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0

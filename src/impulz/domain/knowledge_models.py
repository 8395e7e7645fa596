from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel, Field


class KnowledgeEntry(BaseModel):
    """One row of the coaching knowledge base (field names follow the Notion database)."""

    id: str
    titre: str = ""
    thematique: Optional[str] = None
    question_posee: str = ""
    maturite: List[str] = Field(default_factory=list)
    recommandation: str = ""
    punchline: str = ""
    challenge: str = ""

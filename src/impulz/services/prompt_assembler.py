from __future__ import annotations

"""Builds the system prompt sent with every chat turn.

Sections, in order: base prompt, response format, memory, question backlog,
knowledge base, capability readiness, turn instructions, then either the
triggered capability prompt or the current workflow stage prompt, and finally
the reply-language line.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..domain.knowledge_models import KnowledgeEntry
from ..domain.memory_models import CapabilityType, QuestionItem, SessionMemory
from ..domain.workflow_models import ConversationState, StagePromptResult
from .capabilities import get_capability_prompt
from .memory import is_memory_sufficient_for, memory_gaps
from .stage_prompts import get_stage_prompt


class PromptProvider(Protocol):
    def base_prompt(self) -> Optional[str]: ...
    def stage_prompt(self, stage_number: int) -> Optional[str]: ...
    def knowledge_base(self) -> List[KnowledgeEntry]: ...


DEFAULT_BASE_PROMPT = """# Impulz Coaching Assistant

You are an expert startup coach helping entrepreneurs navigate their journey.

Your role is to:
1. Understand their project and situation
2. Identify their current challenges
3. Provide actionable, differentiated advice
4. Guide them to concrete next steps

You are warm, direct, and focused on action over theory.
You ask probing questions to understand the real problem, not just the surface request.
You challenge assumptions when needed, but always constructively.
"""

REASONING_INSTRUCTIONS = """## RESPONSE FORMAT

You MUST structure your response with these tags:

### 1. Thinking Block (visible to user, collapsible)
<thinking>
- What new info did I learn from the user?
- What memory fields should I update?
- What's still missing?
- Should I ask a question or deliver value?
- If asking, what's the most important gap to fill?
- If knowledge base matches, which entries? Is phase compatible?
</thinking>

### 2. Memory Update (hidden, parsed by system)
<memory_update>
{"path.to.field": "value", "another.field": ["array", "values"]}
</memory_update>

Valid paths: project.name, project.description, project.features, project.phase,
progress.activities, progress.milestones, user.skills, user.assets,
user.constraints.time, user.constraints.budget, user.constraints.geography, user.constraints.lacking

project.phase must be one of: vision, research, design, test, launch, growth.

### 3. Question Backlog (visible to user, collapsible)
<question_backlog>
["Next question to ask", "Another pending question", "..."]
</question_backlog>

### 4. Your Response
After the tags, write your natural response to the user.
- Ask MAXIMUM ONE question per turn
- Use numbered lists for quick action choices
- When using knowledge base recommendations, include the punchline and challenge

### Phase Mismatch Warning
If user asks about something not relevant to their current phase (e.g., funding during vision phase):
- Acknowledge their question
- Explain why it might be premature
- Suggest a more relevant focus based on their diagnostic
- Offer to help with the more relevant topic instead
"""

TURN_INSTRUCTIONS = """## CURRENT TURN INSTRUCTIONS
1. Extract any new information from the user message
2. Update memory with <memory_update> tags
3. Decide: ask ONE question OR deliver a capability (diagnostic/action plan)
4. Update question backlog with <question_backlog> tags
5. Show your reasoning in <thinking> tags
"""

LOCALE_LINES = {
    "fr": "Respond in French.",
    "en": "Respond in English.",
}


def build_memory_context(memory: SessionMemory) -> str:
    project, progress, user = memory.project, memory.progress, memory.user
    lines = ["## CURRENT MEMORY STATE", "", "### Project"]
    lines.append(f"- Name: {project.name}" if project.name else "- Name: (unknown)")
    lines.append(f"- Description: {project.description}" if project.description else "- Description: (unknown)")
    if project.features:
        lines.append(f"- Features: {', '.join(project.features)}")
    for label, value in (
        ("Market category", project.market_category),
        ("Target segment", project.target_segment),
        ("Problem", project.problem),
        ("Solution", project.solution),
    ):
        if value:
            lines.append(f"- {label}: {value}")
    lines.append(f"- Phase: {project.phase}" if project.phase else "- Phase: (unknown)")

    lines += ["", "### Progress"]
    lines += [f"- {a}" for a in progress.activities] or ["- No progress recorded yet"]
    if progress.milestones:
        lines.append(f"- Milestones: {', '.join(progress.milestones)}")

    lines += ["", "### User Profile"]
    lines.append(f"- Skills: {', '.join(user.skills)}" if user.skills else "- Skills: (unknown)")
    lines.append(f"- Assets: {', '.join(user.assets)}" if user.assets else "- Assets: (unknown)")

    c = user.constraints
    lines += ["", "### Constraints"]
    for label, value in (("Time", c.time), ("Budget", c.budget), ("Geography", c.geography)):
        if value:
            lines.append(f"- {label}: {value}")
    if c.lacking:
        lines.append(f"- Lacking: {', '.join(c.lacking)}")

    gaps = memory_gaps(memory)
    lines += ["", "### Information Gaps"]
    lines += [f"- Missing: {g}" for g in gaps] or ["- No critical gaps"]
    return "\n".join(lines) + "\n"


def build_backlog_context(questions: List[QuestionItem]) -> str:
    pending = [q for q in questions if q.status == "pending"]
    in_progress = next((q for q in questions if q.status == "in_progress"), None)
    completed = [q for q in questions if q.status == "completed"]

    lines = ["## QUESTION BACKLOG", "", "### Currently Asking"]
    lines.append(f"- {in_progress.question}" if in_progress else "- None")
    lines += ["", f"### Pending Questions ({len(pending)})"]
    lines += [f"- {q.question}" for q in pending[:5]] or ["- None"]
    lines += ["", f"### Completed ({len(completed)})"]
    lines += [f"- ✓ {q.question}" for q in completed[-3:]] or ["- None"]
    return "\n".join(lines) + "\n"


def build_knowledge_base_context(entries: List[KnowledgeEntry]) -> str:
    if not entries:
        return "## KNOWLEDGE BASE\nNo knowledge base entries loaded."

    by_theme: "OrderedDict[str, int]" = OrderedDict()
    for entry in entries:
        theme = entry.thematique or "Other"
        by_theme[theme] = by_theme.get(theme, 0) + 1

    lines = [f"## KNOWLEDGE BASE ({len(entries)} entries)", "", "### Themes Available"]
    lines += [f"- {theme}: {count} entries" for theme, count in by_theme.items()]
    lines += ["", "### Entry Index (for matching)"]
    for e in entries[:30]:
        phases = ",".join(e.maturite) or "all"
        lines.append(f'[{e.id[:8]}] {e.titre} | Questions: "{e.question_posee}" | Phases: {phases}')
    lines += [
        "",
        "### How to Use Knowledge Base",
        "When the user's question matches an entry, include the entry ID in your thinking, then use its recommendation.",
        "If multiple entries match with high confidence, combine their insights.",
        "If user's phase doesn't match entry's \"maturite\", warn them and suggest more relevant topic.",
    ]
    return "\n".join(lines) + "\n"


def build_capability_readiness(memory: SessionMemory) -> str:
    diag = is_memory_sufficient_for(memory, "flash_diagnostic")
    plan = is_memory_sufficient_for(memory, "action_plan")
    lines = ["## AVAILABLE CAPABILITIES", "", "### Flash Diagnostic"]
    lines.append(
        "✅ READY - You have enough info to offer a diagnostic"
        if diag.sufficient
        else f"❌ NOT READY - Missing: {', '.join(diag.missing)}"
    )
    lines += ["", "### Action Plan"]
    lines.append(
        "✅ READY - You have enough info to create an action plan"
        if plan.sufficient
        else f"❌ NOT READY - Missing: {', '.join(plan.missing)}"
    )
    return "\n".join(lines) + "\n"


def locale_line(locale: Optional[str]) -> Optional[str]:
    if not locale:
        return None
    return LOCALE_LINES.get(locale.split("-")[0].lower())


@dataclass
class AssembledPrompt:
    system: str
    stage_prompt: Optional[StagePromptResult] = None


def assemble_system_prompt(
    memory: SessionMemory,
    questions: List[QuestionItem],
    state: ConversationState,
    capability: Optional[CapabilityType] = None,
    locale: Optional[str] = None,
    provider: Optional[PromptProvider] = None,
) -> AssembledPrompt:
    base = provider.base_prompt() if provider is not None else None
    entries = provider.knowledge_base() if provider is not None else []

    sections = [
        base or DEFAULT_BASE_PROMPT,
        REASONING_INSTRUCTIONS,
        build_memory_context(memory),
        build_backlog_context(questions),
        build_knowledge_base_context(entries),
        build_capability_readiness(memory),
        TURN_INSTRUCTIONS,
    ]

    stage_result: Optional[StagePromptResult] = None
    if capability:
        sections.append(get_capability_prompt(capability, memory))
    else:
        stage_result = get_stage_prompt(state, provider)
        sections.append(stage_result.prompt)

    lang = locale_line(locale)
    if lang:
        sections.append(lang)
    return AssembledPrompt(system="\n\n".join(s.strip("\n") for s in sections), stage_prompt=stage_result)

from __future__ import annotations

from typing import Dict, Optional, Tuple

from ..domain.memory_models import CapabilityType, SessionMemory
from .memory import is_memory_sufficient_for

_DIAGNOSTIC_TRIGGERS = ("diagnostic", "diagnos", "assess")
_ACTION_PLAN_TRIGGERS = ("action plan", "next steps", "plan d'action")

CAPABILITY_TITLES: Dict[str, str] = {
    "flash_diagnostic": "Flash Diagnostic",
    "action_plan": "Action Plan",
}


def should_trigger_capability(memory: SessionMemory, user_message: str) -> Tuple[Optional[CapabilityType], str]:
    """Decide whether the latest user message asks for a capability that memory can support.

    Returns ``(capability, reason)``; capability is None when nothing fires.
    """
    message = (user_message or "").lower()

    if any(word in message for word in _DIAGNOSTIC_TRIGGERS):
        readiness = is_memory_sufficient_for(memory, "flash_diagnostic")
        if readiness.sufficient:
            return "flash_diagnostic", "User requested diagnostic"
        return None, f"Diagnostic not ready: missing {', '.join(readiness.missing)}"

    if any(word in message for word in _ACTION_PLAN_TRIGGERS):
        readiness = is_memory_sufficient_for(memory, "action_plan")
        if readiness.sufficient:
            return "action_plan", "User requested action plan"
        return None, f"Action plan not ready: missing {', '.join(readiness.missing)}"

    return None, "No capability trigger detected"


FLASH_DIAGNOSTIC_PROMPT = """
## CAPABILITY TRIGGERED: Flash Diagnostic

You are now generating a flash diagnostic for this project.

Based on the memory state, provide:

### Structure
1. **Project Summary** - What you understood about their project (2-3 sentences)
2. **Current Phase Assessment** - Where they are in their journey
3. **Strengths Identified** - 2-3 key strengths based on their assets/skills/progress
4. **Gaps & Risks** - 2-3 main concerns or missing elements
5. **Top 3 Recommendations** - Prioritized, actionable advice

### Formatting
- Use bullet points for clarity
- Be direct and specific, not generic
- Reference their actual situation, not hypotheticals

### Quick Buttons
End with:
1. Go deeper into the diagnostic
2. Create an action plan
"""

ACTION_PLAN_PROMPT = """
## CAPABILITY TRIGGERED: Action Plan

You are now generating an action plan for a project in the "{phase}" phase.
User's time availability: {time}

Based on the memory state, provide:

### Structure
1. **Goal for the Next 2 Weeks** - One clear objective
2. **Action Items** (3-5 items)
   - Each action should have:
     - Title
     - Why it matters at this phase
     - Time estimate (in hours)
     - Expected outcome
3. **Dependencies** - What needs to happen first
4. **Success Criteria** - How to know if the 2-week sprint succeeded

### Phase-Specific Focus
- vision / research: Focus on validation, user research, problem definition
- design / test: Focus on building minimum viable version, first users
- launch: Focus on growth experiments, retention, metrics
- growth: Focus on systems, team, funding, expansion

### Quick Buttons
End with:
1. Get more details on action #1
2. Adjust the plan
3. Start a diagnostic
"""


def get_capability_prompt(capability: CapabilityType, memory: SessionMemory) -> str:
    if capability == "flash_diagnostic":
        return FLASH_DIAGNOSTIC_PROMPT
    if capability == "action_plan":
        return ACTION_PLAN_PROMPT.format(
            phase=memory.project.phase or "idée",
            time=memory.user.constraints.time or "unknown availability",
        )
    return ""


def challenge_title(capability: CapabilityType, memory: SessionMemory) -> str:
    title = CAPABILITY_TITLES.get(capability, "Document")
    name = memory.project.name
    return f"{title} - {name}" if name else title

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from ..core.state_machine import STAGE_NUMBERS, compatibility_rules_text
from ..domain.workflow_models import ConversationState, StagePromptResult

logger = logging.getLogger(__name__)


class StagePromptProvider(Protocol):
    def stage_prompt(self, stage_number: int) -> Optional[str]: ...


STAGE1_PROMPT = """# **Stage 1 – Intent Understanding**

**Activity**:
- determine the likely intent categories of the user request with a confidence level above 50%.
- if the user request is not clear, ask for more information.

**Output format**: Follow this TOON structure and example for the user request "I want more money soon":

```
intention_categorisation[category_count]{intention_category,confidence_level,generic}
funding,60,no
sell,55,no
```

- **intention_category** (option variable): choose among
    - No question specified
    - Personality assessment
    - Project assessment
    - Next steps
    - Personal efficiency
    - Sell
    - Funding
    - Meet people
    - Build the product
    - Request expertise
    - Ideation
    - Other
- **confidence_level** (numerical): your confidence in the selected category
- **generic** (boolean): "yes" if the question is not linked to a specific project of the user"""

STAGE2_PROMPT = """# **Stage 2 – Understanding the Entrepreneurial Project**

**Activity**:
- Make the user clarify the concept and propose uploading documents if they want
- Update the business model according to the strict user inputs

**Output**: TOON format with the following columns:

```
business_model{name, market_category, client_segment, problem, value_proposition, differentiator, solution, pitch}
```

Where:
- **name** (short text): product name or code name
- **market_category** (option): webapp, mobileapp, saas, marketplace, physical store, physical place, consulting, …
- **client_segment** (short text): description of the priority target audience (can be multiple segments)
- **problem** (long text): the problem the product solves
- **value_proposition** (long text): benefit for the client when solving this problem
- **differentiator** (long text): the "secret sauce"; how the product solves the problem in a uniquely superior way
- **solution** (long text): feature list
- **pitch** (long text): a synthesis (<200 words) of segment, problem, value proposition, product category, differentiator"""

STAGE3_PROMPT = """# **Stage 3 – Project Progress**

**Activities**:
- Ask: *"What have you already accomplished working on this project?"*
- Categorize **project_phase** into:
    - vision
    - research
    - design
    - test
    - launch
    - growth"""

STAGE4_PROMPT_TEMPLATE = """# **Stage 4 – Underlying Problem**

**Activity**:
- Check whether the user's intent is consistent with their current project phase
- Current detected intents: {{INTENTS}}
- Current project phase: {{PHASE}}

**Intent-Phase Compatibility Rules**:
{{COMPATIBILITY_RULES}}

**Actions**:
- If consistent → acknowledge and move to next stage
- If inconsistent → challenge the user's intent:
    - Explain they are trying to move too fast
    - Identify the **project_phase** based on what they have accomplished
    - Explain in which phases their intent makes more sense
    - Propose a more relevant underlying problem given their progress
    - Ask what they think about it"""

STAGE5_PROMPT = """# **Stage 5 – Action**

**Activities**:
- Ask whether they want suggestions for an action challenge for next week
- Ask for this week's available hours
- Propose **3 priority actions** aligned with their stage and feasible within 7 days given their availability
- Ask them to choose their challenge
- Ask whether they want guidance for this action"""

STAGE6_PROMPT_NO_GUIDANCE = """# **Stage 6 – Guidance**

The user does not want guidance. Proceed directly to Stage 7 (Debrief)."""

STAGE6_PROMPT = """# **Stage 6 – Guidance**

**Activities**:
- Ask whether they already have a proposed method to share
- If they do → comment on it and improve it
- If they don't → provide an explanation and/or a tool / artifact / script / guide (one or both)
- Propose a simulated interview or interactive training"""

STAGE7_PROMPT = """# **Stage 7 – Debrief**

**Activities**:
- Ask what they learned from this session
- Ask how they feel
- Ask their satisfaction level
- Schedule the next session based on their availability"""

FALLBACK_PROMPTS: Dict[int, str] = {
    1: STAGE1_PROMPT,
    2: STAGE2_PROMPT,
    3: STAGE3_PROMPT,
    4: STAGE4_PROMPT_TEMPLATE,
    5: STAGE5_PROMPT,
    6: STAGE6_PROMPT,
    7: STAGE7_PROMPT,
}


def _load(number: int, provider: Optional[StagePromptProvider]) -> StagePromptResult:
    remote = provider.stage_prompt(number) if provider is not None else None
    if remote:
        logger.info("stage_prompt_selected", extra={"stage": number, "source": "notion"})
        return StagePromptResult(prompt=remote, used_fallback=False)
    logger.info("stage_prompt_selected", extra={"stage": number, "source": "fallback"})
    return StagePromptResult(prompt=FALLBACK_PROMPTS[number], used_fallback=True)


def render_underlying_problem(template: str, state: ConversationState) -> str:
    intents = ", ".join(i.category for i in state.intents) or "unknown"
    return (
        template.replace("{{INTENTS}}", intents)
        .replace("{{PHASE}}", state.project_phase or "unknown")
        .replace("{{COMPATIBILITY_RULES}}", compatibility_rules_text())
    )


def get_stage_prompt(state: ConversationState, provider: Optional[StagePromptProvider] = None) -> StagePromptResult:
    """Prompt fragment for the current stage of ``state``.

    Remote text wins when ``provider`` has it; otherwise the built-in text is used.
    """
    number = STAGE_NUMBERS[state.current_stage]
    if number == 6 and not state.wants_guidance:
        logger.info("stage_prompt_selected", extra={"stage": 6, "source": "no_guidance"})
        return StagePromptResult(prompt=STAGE6_PROMPT_NO_GUIDANCE, used_fallback=True)
    result = _load(number, provider)
    if number == 4:
        result = StagePromptResult(prompt=render_underlying_problem(result.prompt, state), used_fallback=result.used_fallback)
    return result

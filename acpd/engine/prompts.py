"""Prompt budgeting and rendering.

Token counts here are a heuristic, not a tokenizer: roughly four
characters per token, scaled by an overhead ratio. Callers may rely on
monotonic ordering (longer text never estimates fewer tokens) and on
summaries fitting the budget they asked for, never on exact values.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from acpd.shared.models.content import ContentBlock, render_block
from acpd.shared.models.session import Session
from acpd.shared.models.workspace import workspace_path_from_uri

CHARS_PER_TOKEN = 4
ELLIPSIS = "..."

EXECUTOR_SYSTEM_PROMPT = """<system_role>
You are the **Executor Agent**, a specialized AI assistant focused on precise code execution.
Your goal is to complete the specific sub-task assigned to you efficiently and accurately.

**Directives:**
1. **Execute, Don't Plan**: The high-level plan has already been made. Focus on the immediate sub-task.
2. **Minimal Chatter**: Do not provide lengthy explanations unless necessary. Report actions and results.
3. **Tool Usage**: Use tools (file editing, git, commands) proactively to achieve the goal.
4. **Context**: You are working within an existing codebase. Respect existing patterns and types.
</system_role>
"""


@dataclass
class SummaryResult:
    summary: str
    original_tokens: int
    truncated: bool


@dataclass
class PromptSegment:
    content: str
    label: str | None = None
    role: str | None = None


@dataclass
class PromptAssemblyResult:
    prompt: str
    total_estimated_tokens: int
    # The segment cut short at the budget boundary (0 or 1).
    truncated_segments: int = 0
    # Segments after the cut that were left out entirely.
    dropped_segments: int = 0


def estimate_tokens(text: str, *, overhead_ratio: float = 1.0) -> int:
    """Approximate the token count of *text*."""
    if not text:
        return 0
    base = math.ceil(len(text) / CHARS_PER_TOKEN)
    return max(0, math.ceil(base * overhead_ratio))


def summarize_to_budget(
    text: str,
    max_tokens: int,
    *,
    overhead_ratio: float = 1.0,
) -> SummaryResult:
    """Cut *text* down to roughly *max_tokens*.

    The cut is proportional by character count and ignores word and
    sentence boundaries.
    """
    original = estimate_tokens(text, overhead_ratio=overhead_ratio)
    if original <= max_tokens:
        return SummaryResult(summary=text, original_tokens=original, truncated=False)
    if max_tokens <= 0:
        return SummaryResult(summary="", original_tokens=original, truncated=True)

    ratio = max_tokens / max(1, original)
    target_chars = math.floor(len(text) * ratio)
    kept = text[: max(0, target_chars - len(ELLIPSIS))].rstrip()
    return SummaryResult(summary=kept + ELLIPSIS, original_tokens=original, truncated=True)


def _segment_header(segment: PromptSegment) -> str:
    return f"### {segment.label}\n" if segment.label else ""


def build_composite_prompt(
    segments: list[PromptSegment],
    max_total_tokens: int | None = None,
) -> PromptAssemblyResult:
    """Join *segments* in priority order under an optional token budget.

    The first segment that does not fit is summarized into whatever
    budget is left and assembly stops there; everything after it is
    dropped. Segments are joined with blank lines.
    """
    parts: list[str] = []
    total = 0
    truncated = 0
    dropped = 0

    for index, segment in enumerate(segments):
        header = _segment_header(segment)
        text = header + segment.content
        tokens = estimate_tokens(text)
        if max_total_tokens is None or total + tokens <= max_total_tokens:
            parts.append(text)
            total += tokens
            continue

        truncated = 1
        dropped = len(segments) - index - 1
        remaining = max(0, max_total_tokens - total)
        content_budget = remaining - estimate_tokens(header)
        if content_budget > 0:
            cut = header + summarize_to_budget(segment.content, content_budget).summary
        else:
            # No room for the label; keep a cut of the content alone.
            cut = summarize_to_budget(segment.content, remaining).summary
        if cut:
            parts.append(cut)
            total += estimate_tokens(cut)
        break

    return PromptAssemblyResult(
        prompt="\n\n".join(parts),
        total_estimated_tokens=total,
        truncated_segments=truncated,
        dropped_segments=dropped,
    )


def build_prompt_from_content(
    blocks: list[ContentBlock],
    context_files: list[str] | None = None,
    agent_context: dict[str, Any] | None = None,
    session: Session | None = None,
) -> str:
    """Render a prompt request into the text handed to the engine.

    Order: role preamble, request lines from the agent context,
    workspace and mode, context files, then each block as submitted.
    """
    prompt = ""
    ac = agent_context or {}

    if ac.get("agentRole") == "executor":
        prompt += EXECUTOR_SYSTEM_PROMPT + "\n\n"
    if ac.get("userRequest"):
        prompt += f"User Request: {ac['userRequest']}\n\n"
    if ac.get("requestingAgent"):
        prompt += f"Requesting Agent: {ac['requestingAgent']}\n\n"
    if ac.get("subTask"):
        prompt += f"Assigned Sub-Task: {ac['subTask']}\n\n"

    if session is not None:
        if session.workspace_uri:
            prompt += f"Working in: {workspace_path_from_uri(session.workspace_uri)}\n"
        prompt += f"Session Mode: {session.mode.value}\n\n"

    if context_files:
        listed = "\n".join(f"- {f}" for f in context_files)
        prompt += f"Context Files:\n{listed}\n\n"

    for block in blocks:
        prompt += render_block(block)

    return prompt.strip()


def extract_message_summary(text: str, limit: int = 200) -> str:
    """First *limit* characters of *text*, with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS

"""
Prompt templates for planning, replanning, reasoning, synthesis and chat.
"""

import json


PLANNER_SYSTEM = "You are an autonomous task planner. Return ONLY valid JSON arrays. No markdown."
STRICT_PLANNER_SYSTEM = (
    "You output machine-readable plans. Your entire reply must be one JSON array "
    "that starts with [ and ends with ]. No prose, no code fences, no comments."
)
REPLANNER_SYSTEM = "You are replanning after a failure. Return ONLY a valid JSON array."
SYNTHESIZER_SYSTEM = "Synthesize task results into a clear, useful answer. Be direct."
THINKER_SYSTEM = "You are the reasoning step of an autonomous agent. Think carefully and answer concisely."

PLAN_FORMAT = """Return ONLY a JSON array:
[
  { "action": "what this step does", "tool": "tool_name", "args": { "key": "value" } },
  { "action": "reasoning about X", "tool": "think", "args": {} }
]"""

PLAN_RULES = """RULES:
- Each step uses exactly one tool, "think" for reasoning that needs the language model, or null for a note-only step
- Use REAL tool names and REAL argument values
- Refer to an earlier step's output with {{step_N}} or {{step_N.key}} (N starts at 1)
- Keep it to 2-8 steps. Don't over-plan."""


def _clip(value, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:limit]


def plan_prompt(goal: str, tools_description: str, context: str = "", memory: str = "") -> str:
    parts = [
        "You are an autonomous agent. Break this goal into concrete executable steps.",
        f"GOAL: {goal}",
    ]
    if context:
        parts.append(f"CONTEXT: {context}")
    if memory:
        parts.append(f"WHAT YOU REMEMBER:\n{memory}")
    parts.append(f"## AVAILABLE TOOLS\n\n{tools_description}")
    parts.append(PLAN_RULES)
    parts.append(PLAN_FORMAT)
    return "\n\n".join(parts)


def strict_plan_prompt(goal: str, tools_description: str, context: str = "", error: str = "") -> str:
    parts = [
        "Your previous reply could not be parsed as a plan."
        + (f" Problem: {error}." if error else ""),
        f"GOAL: {goal}",
    ]
    if context:
        parts.append(f"CONTEXT: {context}")
    parts.append(f"## AVAILABLE TOOLS\n\n{tools_description}")
    parts.append(
        'Reply with a JSON array of at least one step. Every step is an object with '
        'double-quoted keys "action" (string), "tool" (string or null) and "args" (object). '
        'Use double quotes for all strings. No trailing commas.'
    )
    return "\n\n".join(parts)


def replan_prompt(task, failed_step, tools_description: str) -> str:
    history = "\n".join(
        f"[{o.type}] Step {o.step_index + 1}: {o.content}"
        for o in task.observations[-10:]
    )
    completed = "\n".join(
        f"{s.number}. [OK] {s.action}: {_clip(s.output, 150)}"
        for s in task.successful_steps()
    )

    return f"""A step in your plan failed. Create a new plan for the REMAINING work.

ORIGINAL GOAL: {task.goal}

COMPLETED SO FAR:
{completed or '(none)'}

FAILED STEP: {failed_step.action if failed_step else 'unknown'}
ERROR: {(failed_step.error if failed_step else None) or 'unknown'}

OBSERVATIONS:
{history or '(none)'}

## AVAILABLE TOOLS

{tools_description}

{PLAN_RULES}

Create new steps to accomplish what's left. Try a DIFFERENT approach than what failed.
Your new steps are numbered from step {task.next_step_index() + 1}; earlier step numbers stay valid for {{{{step_N}}}}.
Return ONLY a JSON array of steps."""


def think_prompt(task, step, args: dict = None) -> str:
    prior = "\n".join(
        f"Step {s.number} ({s.action}): {_clip(s.output, 400)}"
        for s in task.successful_steps()
        if s.output is not None and s.index != step.index
    )
    args = step.args if args is None else args
    question = args.get("question") or args.get("prompt") or step.action
    return f"""GOAL: {task.goal}

RESULTS SO FAR:
{prior or '(none)'}

CURRENT STEP: {question}

Work through this step and give the answer only."""


def synthesis_prompt(goal: str, results: str) -> str:
    return f"GOAL: {goal}\n\nRESULTS:\n{results}\n\nProvide a clear summary of what was accomplished."


def chat_system_prompt(memories: list) -> str:
    prompt = (
        "You are TaskPilot, an autonomous AI agent. You can search the web, run code, "
        "read and write files, make API calls, and more. If the user asks you to DO "
        "something complex, suggest they phrase it as a task. Be concise, helpful, and direct."
    )
    if memories:
        prompt += "\nYou remember: " + "; ".join(m.content for m in memories)
    return prompt

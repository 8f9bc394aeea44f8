# tasks/ai_engine/prompts.py
"""
Prompt rendering for the chat model and the keyword expander.

The chat prompt is the only place the [TASK_n] contract is stated to the
model; reconciler.REFERENCE_PATTERN is the parser for the same grammar.
"""

from __future__ import annotations

import datetime
import json
from typing import Dict, List, Optional, Sequence

from .config import EngineConfig
from .reconciler import DEGRADED_WARNING, DEGRADED_WARNING_PREFIX
from .types import ChatMessage, Task

CHAT_SYSTEM_PROMPT = (
    "You are a task assistant. Focus ONLY on the tasks listed below; do not "
    "invent tasks or give generic advice. Help the user find, prioritize and "
    "act on their actual tasks.\n\n"
    "RULES:\n"
    "1. Refer to a task ONLY by its reference id, exactly as written, e.g. [TASK_3].\n"
    "2. Mention the tasks you recommend in the order you recommend them.\n"
    "3. Never cite an id that is not in the list.\n"
    "4. Be concise and actionable. Answer in the language of the user's question."
)

EXPANSION_SYSTEM_PROMPT = (
    "You are a query analysis engine for a task manager. Extract search keywords "
    "and task properties from the user's query.\n\n"
    "RULES:\n"
    "1. coreKeywords: the meaningful words of the query, in their original language.\n"
    "2. keywords: coreKeywords plus up to {per_keyword} synonyms or translations per "
    "core keyword (English and Chinese plus the query's language).\n"
    "3. Only set a property when the query clearly asks for it, else null.\n"
    "4. priority: 1 (highest) to 4, a list of those, \"any\" or \"none\".\n"
    "5. dueDate: one of today, tomorrow, overdue, future, week, next-week, month, "
    "any, none, or YYYY-MM-DD.\n"
    "6. status: one or more of: {statuses}.\n"
    "7. Return ONLY valid JSON following this schema: {schema}"
)

EXPANSION_SCHEMA = {
    "coreKeywords": ["..."],
    "keywords": ["..."],
    "priority": None,
    "dueDate": None,
    "dueDateRange": None,
    "status": None,
    "folder": None,
    "tags": [],
}


def _describe_task(task: Task, config: EngineConfig) -> List[str]:
    details = []
    if task.status_category:
        category = config.status_categories.get(task.status_category)
        details.append(f"Status: {category.display_name if category else task.status_category}")
    if task.priority is not None:
        details.append(f"Priority: {task.priority}")
    if task.due_date is not None:
        details.append(f"Due: {task.due_date.isoformat()}")
    if task.folder:
        details.append(f"Folder: {task.folder}")
    if task.tags:
        details.append("Tags: " + ", ".join(f"#{tag}" for tag in task.tags))
    return details


def build_task_context(candidates: Sequence[Task], config: EngineConfig) -> str:
    """Render candidates as a numbered list; [TASK_n] is the 1-based position."""
    if not candidates:
        return "No tasks matched the query."
    lines = [f"Found {len(candidates)} relevant task(s):", ""]
    for position, task in enumerate(candidates, start=1):
        lines.append(f"[TASK_{position}] {task.text}")
        details = _describe_task(task, config)
        if details:
            lines.append("  " + " | ".join(details))
    return "\n".join(lines)


def sanitize_history(history: Sequence[ChatMessage], limit: int) -> List[ChatMessage]:
    """Keep the last ``limit`` messages and drop earlier degraded-mode warnings."""
    warning = f"{DEGRADED_WARNING_PREFIX}{DEGRADED_WARNING}"
    cleaned = []
    for message in list(history)[-limit:] if limit > 0 else []:
        content = message.content
        if message.role == "assistant" and content.startswith(warning):
            content = content[len(warning):].lstrip()
        if content:
            cleaned.append(ChatMessage(role=message.role, content=content))
    return cleaned


def build_chat_messages(
    query: str,
    candidates: Sequence[Task],
    config: EngineConfig,
    history: Sequence[ChatMessage] = (),
    today: Optional[datetime.date] = None,
) -> List[Dict[str, str]]:
    system = CHAT_SYSTEM_PROMPT
    if today is not None:
        system += f"\n\nToday is {today.isoformat()}."
    system += "\n\n" + build_task_context(candidates, config)

    messages = [{"role": "system", "content": system}]
    for message in sanitize_history(history, config.max_chat_history):
        messages.append({"role": message.role, "content": message.content})
    messages.append({"role": "user", "content": query})
    return messages


def build_expansion_messages(
    free_text: str, config: EngineConfig, per_keyword: int = 5
) -> List[Dict[str, str]]:
    system = EXPANSION_SYSTEM_PROMPT.format(
        per_keyword=per_keyword,
        statuses=", ".join(config.status_categories),
        schema=json.dumps(EXPANSION_SCHEMA),
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Query: {free_text}"},
    ]

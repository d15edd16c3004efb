"""
Decides whether a chat message should run as a full task.
"""

import re


SHORT_MESSAGE_CHARS = 10
SHORT_TASK_RE = re.compile(r"^(search|find|get|check|run|read)")

TASK_PATTERNS = [re.compile(p) for p in (
    r"^(search|find|look up|google)\b",
    r"^(create|build|write|generate|make)\b",
    r"^(monitor|watch|track|check)\b",
    r"^(post|send|publish|tweet)\b",
    r"^(download|fetch|get|grab)\b",
    r"^(run|execute|deploy|install)\b",
    r"^(analyze|summarize|review|compare)\b",
    r"^(scrape|crawl|extract)\b",
    r"^(schedule|remind|automate)\b",
    r"^(read|open|browse)\b.*\b(file|url|http|www|rss|feed)",
    r"^(calculate|compute|solve)\b",
    r"^(list|show)\b.*\b(files|directory)",
    r"\b(weather|forecast)\b.*\b(in|for|at)\b",
    r"\b(news|headlines|latest)\b.*\b(about|on|for)\b",
)]


def looks_like_task(message: str) -> bool:
    text = message.lower().strip()

    # Short messages are usually chat
    if len(text) < SHORT_MESSAGE_CHARS and not SHORT_TASK_RE.match(text):
        return False

    return any(p.search(text) for p in TASK_PATTERNS)

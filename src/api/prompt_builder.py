"""
Prompt assembly for agent-reply generation.

The final system prompt is the prompt version's base text, then the
knowledge base rendered as per-category rule blocks, then fixed output
format instructions. The user message is the prompt version's user
template followed by the raw email thread.
"""

import re
from typing import Dict, Iterable, List, Mapping

KNOWLEDGE_HEADER = "\n\n## CRITICAL TRAINING RULES (You MUST follow these)\n\n"

OUTPUT_FORMAT_INSTRUCTIONS = """

## OUTPUT FORMAT REQUIREMENTS
- Output ONLY the email response body - no preamble, no thinking, no explanations
- Do NOT include any tool invocations, XML tags, or function calls in your output
- Do NOT include phrases like "I need to look up" or "Let me check" or any internal reasoning
- Start directly with the email greeting (e.g., "Dear [Name]," or "Hello,")
- End with the signature
- Your entire response should be ready to send to the customer as-is"""


def format_category_title(category: str) -> str:
    """'refund_handling' -> 'Refund Handling'."""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), category.replace("_", " "))


def group_by_category(entries: Iterable[Mapping]) -> Dict[str, List[Mapping]]:
    """Group entries by category, keeping the order categories first appear in."""
    grouped: Dict[str, List[Mapping]] = {}
    for entry in entries:
        grouped.setdefault(entry["category"], []).append(entry)
    return grouped


def build_knowledge_section(entries: Iterable[Mapping]) -> str:
    grouped = group_by_category(entries)
    if not grouped:
        return ""

    section = KNOWLEDGE_HEADER
    for category, items in grouped.items():
        section += f"### {format_category_title(category)}\n"
        for item in items:
            section += f"- **{item['key']}**: {item['value']}\n"
        section += "\n"
    return section


def build_system_prompt(base_prompt: str, entries: Iterable[Mapping]) -> str:
    return base_prompt + build_knowledge_section(entries) + OUTPUT_FORMAT_INSTRUCTIONS


def build_user_message(user_prompt: str, email_thread: str) -> str:
    return f"{user_prompt}\n\nEmail Thread:\n{email_thread}"

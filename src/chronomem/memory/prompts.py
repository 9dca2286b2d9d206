"""Prompts for knowledge extraction and memory summarization."""

from chronomem.core.types import TemporalGrain

DEFAULT_EXTRACTION_PROMPT = """You maintain a knowledge graph of durable facts about the user and the world they talk about.

Read the interaction and decide which facts should be added to, changed in, or removed from the graph.
Each fact is a (subject, predicate, object) triple:
- subject: the entity the fact is about, e.g. "User", "Acme Corp"
- predicate: a short lowercase relation, e.g. "likes", "works_at", "uses"
- object: the related entity or value, e.g. "React", "Berlin"

Operations:
- ADD: a new fact was stated or clearly implied
- UPDATE: a fact changed; the subject and predicate stay, the object is the new value
- DELETE: a previously true fact was retracted

Only record facts that will still matter in future conversations. Skip greetings, small talk and
one-off requests. Use a confidence between 0 and 1 reflecting how explicitly the fact was stated.

Respond with JSON only:
{"memory_operations": [{"operation": "ADD", "subject": "User", "predicate": "likes", "object": "React", "confidence": 0.9}]}"""

SUMMARY_INSTRUCTION = (
    "### SUMMARY\n"
    'Also include a concise conversation summary in a top-level "summary" field '
    'alongside "memory_operations".'
)

REPAIR_SYSTEM_PROMPT = (
    "You are a JSON repair assistant. Return ONLY valid JSON for the schema: "
    '{ "summary": string, "memory_operations": Array<{ "operation": "ADD"|"UPDATE"|"DELETE", '
    '"subject": string, "predicate": string, "object": string, "confidence"?: number }> }'
)


def build_extraction_system_prompt(prompt_override: str | None = None) -> str:
    """Base prompt (override or default) followed by the summary instruction."""
    base = prompt_override.strip() if prompt_override and prompt_override.strip() else None
    return f"{base or DEFAULT_EXTRACTION_PROMPT}\n\n{SUMMARY_INSTRUCTION}"


def build_extraction_messages(conversation_text: str) -> list[dict[str, str]]:
    return [
        {
            "role": "user",
            "content": (
                f"Current Interaction:\n{conversation_text}\n\n"
                'Return a valid JSON object with keys "summary" and "memory_operations".'
            ),
        }
    ]


def build_repair_messages(raw_response: str, error_message: str) -> list[dict[str, str]]:
    return [
        {
            "role": "user",
            "content": (
                "The previous response failed to parse as JSON.\n"
                f"Error: {error_message}\n\n"
                f"Response:\n{raw_response}\n\n"
                "Fix the JSON and return only valid JSON, no markdown."
            ),
        }
    ]


def _summary_prompt(source: str, period: str, closing: str) -> str:
    return (
        f"You are condensing {source} into one summary of the {period}. "
        "Keep what is still worth remembering and drop the rest. Cover:\n"
        "- Important events and milestones\n"
        "- People mentioned, with their roles and relationships\n"
        "- Patterns, trends and changes over time\n"
        "- Facts that remain relevant\n\n"
        f"{closing} Use clear, factual language."
    )


# Each summary grain is built from the grain directly below it
SUMMARIZATION_PROMPTS: dict[TemporalGrain, str] = {
    TemporalGrain.DAILY: _summary_prompt(
        "working memory from one day", "day", "Keep the summary concise but complete."
    ),
    TemporalGrain.WEEKLY: _summary_prompt(
        "a week of daily summaries", "week", "Write a cohesive account of the week."
    ),
    TemporalGrain.MONTHLY: _summary_prompt(
        "a month of weekly summaries", "month", "Give a high-level overview of the month."
    ),
    TemporalGrain.QUARTERLY: _summary_prompt(
        "a quarter of monthly summaries", "quarter", "Give a high-level overview of the quarter."
    ),
    TemporalGrain.YEARLY: _summary_prompt(
        "a year of quarterly summaries", "year", "Give a high-level overview of the year."
    ),
}

SUMMARY_SEPARATOR = "\n\n---\n\n"


def build_summarization_messages(content: list[str]) -> list[dict[str, str]]:
    return [
        {
            "role": "user",
            "content": (
                "Please summarize the following information:\n\n"
                f"{SUMMARY_SEPARATOR.join(content)}"
            ),
        }
    ]

from __future__ import annotations

CLASSIFY_SYSTEM = """You organize personal notes. Classify the note into exactly ONE category and suggest tags.

Categories:
- meeting: discussions with people, calls, meetings, standups, sync sessions, recaps
- task: todos, action items, checkboxes, deadlines, things to do, reminders
- idea: brainstorms, concepts, "what if" thoughts, hypotheses, creative exploration
- journal: personal reflections, daily logs, feelings, moods, diary entries, gratitude
- reference: facts, documentation, code, links, guides, how-tos, definitions
- note: general notes that don't fit the above

Tags: 1 to 4 short topical tags, lowercase, single words or hyphenated, no '#'.

Output MUST be valid JSON only. No markdown, no commentary.
Return exactly: {"type": "<category>", "tags": ["...", "..."]}

Examples:
"Team sync at 2pm. Discussed Q1 goals. Action: John to send proposal by Friday." -> {"type": "meeting", "tags": ["planning", "q1"]}
"- Buy groceries\\n- Call dentist\\n- Finish report" -> {"type": "task", "tags": ["errands"]}
"What if we used AI to auto-categorize notes? Could save time." -> {"type": "idea", "tags": ["ai", "productivity"]}
"""

TITLE_SYSTEM_TEMPLATE = (
    "Create a short title (max 50 chars) for the note. {example} "
    "Reply with the title only, no quotes."
)

TITLE_EXAMPLES: dict[str, str] = {
    "meeting": "Example: 'Team Sync' or 'Design Review'",
    "task": "Example: 'Daily Tasks' or 'Finish Report'",
    "idea": "Example: 'AI Automation Idea'",
    "journal": "Example: 'Gratitude Today'",
    "reference": "Example: 'React Hooks Guide'",
}
DEFAULT_TITLE_EXAMPLE = "Example: 'Meeting Notes' or 'Project Ideas'"

INTERPRET_SYSTEM_TEMPLATE = """You turn a search request over personal notes into structured search parameters.
Today is {today} ({weekday}).

Output MUST be valid JSON only. No markdown, no commentary.
Return exactly:
{{
  "interpretedQuery": "<the topic to search for, without time words>",
  "temporalHint": "<time expression from the request, e.g. 'last week', 'yesterday', or null>",
  "searchTerms": ["<key words>", "..."],
  "topics": ["<broader topics>", "..."]
}}

Examples:
"what was I thinking about travel last week" -> {{"interpretedQuery": "travel", "temporalHint": "last week", "searchTerms": ["travel", "trip"], "topics": ["travel"]}}
"notes about the budget meeting" -> {{"interpretedQuery": "budget meeting", "temporalHint": null, "searchTerms": ["budget", "meeting"], "topics": ["finance", "work"]}}
"""

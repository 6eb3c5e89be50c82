"""Handlebars prompt rendering for turn narration."""

from collections.abc import Callable
from typing import Any

import pybars

from rpg_turns.llm import LlmMessage


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}} — iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Narration templates ──────────────────────────────────

NARRATOR_SYSTEM_PROMPT = """\
You are the narrator of a grim, grounded fantasy role-playing game.
The game engine has already decided what happened this turn; never change
outcomes, numbers, or who was hit. Describe the events below in {{tone}}
prose, second person, at most three short paragraphs. Do not offer the
player choices and do not invent new enemies or items."""

NARRATOR_USER_PROMPT = """\
Turn {{turn_no}} ({{node_type}}, {{node_state}}).
{{#if raw_input}}Player input: "{{{raw_input}}}"
{{/if}}Summary: {{{summary}}}

Events:
{{#take events 20}}- {{{this.text}}}
{{/take}}
{{#if player}}Player: HP {{player.hp.after}} ({{player.hp.delta}}), stamina {{player.stamina.after}}.
{{/if}}{{#if enemies}}Enemies:
{{#each enemies}}- {{{this.name}}}: HP {{this.hp}}, {{this.distance}}
{{/each}}{{/if}}"""


def build_context(turn: dict[str, Any]) -> dict[str, Any]:
    """Assemble template variables from a stored turn row."""
    result = turn["server_result"]
    diff = result.get("diff", {})
    names = {t["id"]: t["name"] for t in result.get("ui", {}).get("target_labels", [])}
    return {
        "turn_no": turn["turn_no"],
        "node_type": result["node"]["type"],
        "node_state": result["node"]["state"],
        "raw_input": turn.get("raw_input") or "",
        "summary": result["summary"]["display"],
        "tone": result.get("ui", {}).get("tone_hint", "neutral"),
        "events": result.get("events", []),
        "player": diff.get("player"),
        "enemies": [
            {
                "name": names.get(e["enemy_id"], e["enemy_id"]),
                "hp": e["hp"]["after"],
                "distance": e.get("distance") or "",
            }
            for e in diff.get("enemies", [])
        ],
    }


def build_narration_messages(turn: dict[str, Any]) -> list[LlmMessage]:
    ctx = build_context(turn)
    return [
        LlmMessage(role="system", content=render_prompt(NARRATOR_SYSTEM_PROMPT, ctx)),
        LlmMessage(role="user", content=render_prompt(NARRATOR_USER_PROMPT, ctx)),
    ]

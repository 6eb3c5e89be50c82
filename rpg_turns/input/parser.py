"""Rule-based parser: free text -> ParsedIntent.

Keyword matching only. Each action type matches at most once and intents
keep catalogue order, not the order words appear in the text. Confidence
drops as more action types match, since compound inputs are the ones a
rule table reads worst.
"""

from __future__ import annotations

import re

from rpg_turns.models import Direction, ParsedIntent, RiskLevel

KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("ATTACK_MELEE", (
        "attack", "strike", "slash", "stab", "swing", "hit", "punch", "kick",
        "cut", "smash", "sword", "axe", "spear", "dagger", "fist",
    )),
    ("ATTACK_RANGED", ("shoot", "fire", "bow", "crossbow", "arrow", "throw")),
    ("EVADE", ("dodge", "evade", "roll", "duck", "sidestep")),
    ("DEFEND", ("block", "defend", "shield", "parry", "guard", "brace")),
    ("MOVE", (
        "left", "right", "forward", "back", "move", "approach", "step",
        "advance", "retreat", "pillar", "cover",
    )),
    ("FLEE", ("flee", "run away", "escape", "retreat from")),
    ("USE_ITEM", ("potion", "item", "use", "drink", "eat", "tonic", "smoke bomb", "dart")),
    ("INTERACT", ("door", "lever", "close", "open", "push", "pull")),
    ("TALK", ("ask", "persuade", "threaten", "talk", "tell", "say")),
    ("SEARCH", ("search", "inspect", "examine", "look around", "explore", "find")),
    ("OBSERVE", ("observe", "watch", "wait", "study", "listen")),
]

ITEM_HINTS: list[tuple[str, tuple[str, ...]]] = [
    ("healing", ("potion", "heal", "healing", "salve")),
    ("stamina", ("tonic", "stamina", "energy")),
    ("smoke", ("smoke",)),
    ("poison", ("dart", "poison")),
]

DIRECTIONS: list[tuple[Direction, tuple[str, ...]]] = [
    ("RIGHT", ("right",)),
    ("LEFT", ("left",)),
    ("BACK", ("back", "backward", "behind")),
    ("FORWARD", ("forward", "ahead")),
]

CONSTRAINTS: list[tuple[str, tuple[str, ...]]] = [
    ("careful", ("careful", "cautious")),
    ("fast", ("quick", "fast", "hurry")),
    ("stealth", ("sneak", "quiet", "stealth")),
]

_TARGET_RE = re.compile(r"enemy[\s_-]*#?(\d+)")


def _contains(text: str, word: str) -> bool:
    """Word-prefix match: 'attack' matches 'attacks' but not 'counterattack'."""
    return re.search(r"\b" + re.escape(word), text) is not None


def _first_match(text: str, table: list[tuple[str, tuple[str, ...]]]) -> str | None:
    for name, words in table:
        if any(_contains(text, w) for w in words):
            return name
    return None


def parse(input_text: str) -> ParsedIntent:
    text = input_text.lower().strip()

    matched = [name for name, words in KEYWORDS if any(_contains(text, w) for w in words)]

    item_hint = _first_match(text, ITEM_HINTS) if "USE_ITEM" in matched else None
    direction = _first_match(text, DIRECTIONS)
    constraints = [name for name, words in CONSTRAINTS if any(_contains(text, w) for w in words)]

    targets: list[str] = []
    m = _TARGET_RE.search(text)
    if m:
        targets.append(f"enemy_{m.group(1).zfill(2)}")

    if not matched:
        confidence = 0.0
    elif len(matched) == 1:
        confidence = 0.9
    elif len(matched) == 2:
        confidence = 0.8
    else:
        confidence = 0.6

    risk: RiskLevel = "HIGH" if len(matched) > 2 else "MED" if len(matched) > 1 else "LOW"

    return ParsedIntent(
        input_text=input_text,
        intents=matched or ["OBSERVE"],
        targets=targets,
        constraints=constraints,
        risk_level=risk,
        source="RULE",
        confidence=confidence,
        primary=matched[0] if matched else None,
        modifiers=matched[1:],
        direction=direction,  # type: ignore[arg-type]
        item_hint=item_hint,
    )

"""Input policy: cooperative transform.

Denial is the last resort. Checks run in a fixed order and the first one
that fires decides the outcome:

    1. node already ended               -> DENY
    2. combat action in non-combat node -> TRANSFORM to OBSERVE
    3. more than two actions            -> PARTIAL, first two kept
    4. illegal flags present            -> DENY
    5. otherwise                        -> ALLOW
"""

from __future__ import annotations

from rpg_turns.models import COMBAT_ACTIONS, NodeState, NodeType, ParsedIntent, PolicyDecision

MAX_ACTIONS = 2
PARTIAL_CONFIDENCE_CAP = 0.8


def check_policy(intent: ParsedIntent, node_type: NodeType, node_state: NodeState) -> PolicyDecision:
    if node_state == "NODE_ENDED":
        return PolicyDecision(result="DENY", reason="Node already ended")

    if node_type != "COMBAT" and any(i in COMBAT_ACTIONS for i in intent.intents):
        return PolicyDecision(
            result="TRANSFORM",
            reason="Combat action in non-combat node, transforming to OBSERVE",
            intent=intent.model_copy(update={
                "intents": ["OBSERVE"],
                "source": "RULE",
                "confidence": 1.0,
            }),
        )

    if len(intent.intents) > MAX_ACTIONS:
        return PolicyDecision(
            result="PARTIAL",
            reason=f"Too many actions ({len(intent.intents)}), reduced to {MAX_ACTIONS}",
            intent=intent.model_copy(update={
                "intents": intent.intents[:MAX_ACTIONS],
                "confidence": min(intent.confidence, PARTIAL_CONFIDENCE_CAP),
            }),
        )

    if intent.illegal_flags:
        return PolicyDecision(
            result="DENY",
            reason=f"Illegal flags: {', '.join(intent.illegal_flags)}",
        )

    return PolicyDecision(result="ALLOW")

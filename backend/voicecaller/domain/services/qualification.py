"""
Keyword heuristics for stage progression, qualification signals and outcomes.

Precedence (deterministic):
1. Objection phrases ("not interested", "no thanks", "busy") always move
   the conversation to closing, whatever the current stage.
2. Otherwise only the single forward transition out of the current stage
   is evaluated; a stage is never skipped in one turn.
3. Signal extraction checks negative/specific patterns before
   positive/generic ones, and the first match per key wins. A later turn
   may overwrite an earlier value for the same key.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from voicecaller.domain.models.call import CallOutcome
from voicecaller.domain.models.conversation import ConversationContext, ConversationStage

OBJECTION_PATTERNS = [
    r"\bnot interested\b",
    r"\bno thanks?\b",
    r"\bbusy\b",
]

FORWARD_TRANSITIONS: Dict[ConversationStage, Tuple[ConversationStage, List[str]]] = {
    ConversationStage.OPENING: (
        ConversationStage.QUALIFICATION,
        [r"\b(good|fine|okay|ok|great|well)\b"],
    ),
    ConversationStage.QUALIFICATION: (
        ConversationStage.INTEREST_BUILDING,
        [r"\b(interested|need|want|looking for)\b"],
    ),
    ConversationStage.INTEREST_BUILDING: (
        ConversationStage.CLOSING,
        [r"\bwhen\b", r"\bhow much\b", r"\bnext steps?\b", r"\bsign me up\b"],
    ),
}

# key -> ordered (pattern, value) rules; first match wins
SIGNAL_RULES: Dict[str, List[Tuple[str, Any]]] = {
    "business_type": [
        (r"\b(restaurant|food|cafe|diner|bakery)\b", "restaurant"),
        (r"\b(retail|store|shop|boutique)\b", "retail"),
        (r"\b(service|consulting|agency|contractor)\b", "service"),
    ],
    "has_website": [
        (r"\bno website\b|\bdon'?t have (a |one|any)|\bwithout a (web)?site\b", False),
        (r"\b(website|site|web page)\b", True),
    ],
    "budget_concern": [
        (r"\b(expensive|cost|price|afford|budget)\b", True),
    ],
    "timeline": [
        (r"\b(soon|asap|quickly|right away|immediately)\b", "urgent"),
        (r"\b(month|months|weeks)\b", "medium"),
    ],
    "interest_level": [
        (r"\bnot interested\b", "low"),
        (r"\b(interested|sounds good|tell me more)\b", "high"),
        (r"\b(maybe|thinking about|not sure)\b", "medium"),
    ],
}


def _matches_any(patterns: List[str], text: str) -> bool:
    return any(re.search(p, text) for p in patterns)


def next_stage(current: ConversationStage, customer_text: str) -> ConversationStage:
    text = customer_text.lower()

    if _matches_any(OBJECTION_PATTERNS, text):
        return ConversationStage.CLOSING

    transition = FORWARD_TRANSITIONS.get(current)
    if transition and _matches_any(transition[1], text):
        return transition[0]

    return current


def extract_signals(customer_text: str) -> Dict[str, Any]:
    """Signals found in one customer utterance"""
    text = customer_text.lower()
    signals: Dict[str, Any] = {}

    for key, rules in SIGNAL_RULES.items():
        for pattern, value in rules:
            if re.search(pattern, text):
                signals[key] = value
                break

    return signals


def determine_outcome(context: ConversationContext) -> CallOutcome:
    """
    Pure mapping from context to outcome.

    high interest after 3+ turns -> qualified
    medium interest or interest_building stage -> follow_up
    fewer than 2 turns or still in opening -> no_answer
    otherwise -> not_interested
    """
    interest = context.qualification_data.get("interest_level")

    if interest == "high" and context.turn_count >= 3:
        return CallOutcome.QUALIFIED
    if interest == "medium" or context.stage == ConversationStage.INTEREST_BUILDING:
        return CallOutcome.FOLLOW_UP
    if context.turn_count < 2 or context.stage == ConversationStage.OPENING:
        return CallOutcome.NO_ANSWER
    return CallOutcome.NOT_INTERESTED


def qualification_score(qualification_data: Dict[str, Any], turn_count: int = 0) -> int:
    """Deterministic 0-100 score from extracted signals"""
    score = 0

    interest = qualification_data.get("interest_level")
    score += {"high": 40, "medium": 20}.get(interest, 0)

    timeline = qualification_data.get("timeline")
    score += {"urgent": 25, "medium": 15}.get(timeline, 0)

    if qualification_data.get("has_website") is False:
        score += 15
    if qualification_data.get("business_type"):
        score += 10
    if qualification_data.get("budget_concern"):
        score -= 10

    score += min(turn_count, 5) * 2
    return max(0, min(100, score))


def summarize(qualification_data: Dict[str, Any], outcome: CallOutcome, turn_count: int) -> str:
    parts = [f"Outcome: {outcome.value}", f"customer turns: {turn_count}"]
    for key in ("business_type", "has_website", "timeline", "interest_level", "budget_concern"):
        if key in qualification_data:
            parts.append(f"{key}={qualification_data[key]}")
    return "; ".join(parts)


def replay_transcript(
    call_id: str,
    lead_name: str,
    customer_lines: List[str],
    stage: Optional[ConversationStage] = None
) -> ConversationContext:
    """Rebuild a context from persisted customer lines (post-call analysis)"""
    context = ConversationContext(call_id=call_id, lead_name=lead_name)
    for line in customer_lines:
        context.turn_count += 1
        context.qualification_data.update(extract_signals(line))
        context.stage = next_stage(context.stage, line)
    if stage is not None:
        context.stage = stage
    return context

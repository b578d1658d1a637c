"""
Text shaping for spoken output

shape() turns agent text into SSML with pacing breaks and emphasis.
It only ever inserts markup into normalized text, so stripping the
markup back out recovers the normalized text exactly; that is what
makes shape(shape(x)) == shape(x).
"""
import re
from xml.sax.saxutils import escape, unescape

FILLER_BREAK = '<break time="0.2s"/>'
QUESTION_BREAK = '<break time="0.5s"/>'
SENTENCE_BREAK = '<break time="0.4s"/>'
EMPHASIS_OPEN = '<emphasis level="moderate">'
EMPHASIS_CLOSE = '</emphasis>'

FILLER_WORDS = [
    "You know",
    "Actually",
    "Honestly",
    "I mean",
    "So",
    "Well",
    "Um",
    "Hmm",
]

# Longest first so "Oh really?" wins over "Really?"
REACTION_PHRASES = [
    "That's interesting!",
    "Oh really?",
    "I get it",
    "Really?",
    "Wow,",
    "Cool!",
    "Nice!",
]

_FILLER_RE = re.compile(
    r"(?<![\w'])(" + "|".join(re.escape(w) for w in FILLER_WORDS) + r"),(?!<break)"
)
_REACTION_RE = re.compile(
    r"(?<![\w'])(" + "|".join(re.escape(p) for p in REACTION_PHRASES) + r")"
)
_QUESTION_RE = re.compile(r"\?((?:</emphasis>)?)(?=\s|$)")
_SENTENCE_RE = re.compile(r"([.!])((?:</emphasis>)?) (?=\S)")

_MARKUP_RE = re.compile(r'<break time="[^"]*"/>|<emphasis level="[^"]*">|</emphasis>')
_CONTAINER_RE = re.compile(r'</?speak>|<emphasis level="[^"]*">|</emphasis>')


def normalize_punctuation(text: str) -> str:
    """Collapse repeated punctuation and whitespace; ensure terminal punctuation"""
    text = re.sub(r"\s+", " ", text or "").strip()
    if not text:
        return ""

    text = re.sub(r"\.{2,}", ".", text)
    text = re.sub(r"\?{2,}", "?", text)
    text = re.sub(r"!{2,}", "!", text)

    if text[-1] not in ".!?":
        text += "."
    return text


def is_shaped(text: str) -> bool:
    return text.startswith("<speak>") and text.endswith("</speak>")


def to_plain_text(text: str) -> str:
    """Remove every marker shape() adds, returning the spoken words"""
    if not is_shaped(text):
        return text
    inner = text[len("<speak>"):-len("</speak>")]
    return unescape(_MARKUP_RE.sub("", inner))


def strip_container_markup(text: str) -> str:
    """
    Keep <break/> pauses, drop <speak>/<emphasis> wrappers.

    Neural voice APIs accept break tags inline but not full SSML.
    """
    if not is_shaped(text):
        return text
    return unescape(_CONTAINER_RE.sub("", text))


def shape(text: str) -> str:
    """
    Shape agent text for speech.

    - normalizes punctuation
    - emphasizes reaction phrases
    - adds a short pause after filler words
    - adds pauses after questions and sentence boundaries
    """
    plain = normalize_punctuation(to_plain_text(text))
    if not plain:
        return ""

    ssml = escape(plain)
    ssml = _REACTION_RE.sub(lambda m: f"{EMPHASIS_OPEN}{m.group(1)}{EMPHASIS_CLOSE}", ssml)
    ssml = _FILLER_RE.sub(lambda m: f"{m.group(1)},{FILLER_BREAK}", ssml)
    ssml = _QUESTION_RE.sub(lambda m: f"?{m.group(1)}{QUESTION_BREAK}", ssml)
    ssml = _SENTENCE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{SENTENCE_BREAK} ", ssml)

    return f"<speak>{ssml}</speak>"

"""Sub-score heuristics for the five virality dimensions.

Every scorer returns an integer in [0, 100]:
- hook: attention grabbed within the first few seconds
- emotion: strongest emotional register present
- insight: actionable, concrete value
- cta: prompts to share, comment or follow
- quality: duration sweet spot, clean boundaries, speech density
"""
import re
from typing import Dict

from .config import ViralityConfig
from .features import TranscriptFeatures
from .windows import ClipWindow

HOOK_WORDS = (
    "secret", "never", "always", "truth", "mistake", "how to", "why", "what if",
    "stop", "nobody", "everyone", "biggest", "worst", "best", "nobody tells you",
)
QUESTION_OPENERS = (
    "why", "how", "what", "who", "when", "where", "did", "do", "does",
    "is", "are", "can", "would", "have", "ever",
)

# Emotional registers and their scores
EMOTION_LEXICON = {
    "humor": (90, ("funny", "hilarious", "laugh", "joke", "lol", "ridiculous")),
    "surprise": (88, ("shocking", "unbelievable", "insane", "crazy", "wow", "surprised", "incredible")),
    "inspiration": (85, ("dream", "inspire", "believe", "achieve", "overcome", "transform")),
    "controversy": (82, ("wrong", "controversial", "unpopular", "lie", "myth", "overrated")),
    "motivation": (80, ("never give up", "success", "grind", "win", "motivated", "discipline")),
    "story": (78, ("i remember", "one day", "when i was", "story", "happened")),
    "education": (75, ("learn", "lesson", "explain", "because", "understand", "research")),
    "fear": (70, ("scared", "afraid", "danger", "risk", "warning", "terrifying")),
}
NEUTRAL_EMOTION = 50

ACTION_WORDS = ("step", "tip", "trick", "hack", "method", "strategy", "secret", "how to", "framework")
SHARE_WORDS = ("share", "tell", "tag", "send", "save", "follow", "comment", "subscribe")
DEBATE_WORDS = ("controversial", "debate", "agree", "disagree", "unpopular opinion")
RELATABLE_WORDS = ("relatable", "everyone", "we all", "you too", "all of us")

_DIGIT = re.compile(r"\d")


def _contains(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


def _contains_any(text: str, phrases) -> bool:
    return any(_contains(text, p) for p in phrases)


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def hook_score(opening: str) -> int:
    """Score the text spoken in the hook window."""
    text = opening.lower().strip()
    if not text:
        return 0

    score = 30
    first_word = re.sub(r"[^\w']", "", text.split()[0])
    if "?" in text or first_word in QUESTION_OPENERS:
        score += 25
    if _contains_any(text, HOOK_WORDS):
        score += 20
    if _DIGIT.search(text):
        score += 10
    if _contains(text, "you") or _contains(text, "your"):
        score += 10
    if "!" in text:
        score += 10
    return _clamp(score)


def emotion_score(text: str) -> int:
    """Strongest emotional register, plus a little for each additional one."""
    lower = text.lower()
    matched = [score for score, words in EMOTION_LEXICON.values() if _contains_any(lower, words)]
    if not matched:
        return NEUTRAL_EMOTION

    score = max(matched) + 2 * (len(matched) - 1)
    if "!" in text:
        score += 5
    return _clamp(score)


def insight_score(text: str, duration: float) -> int:
    lower = text.lower()
    score = 60
    if _contains_any(lower, ACTION_WORDS):
        score += 20
    if _DIGIT.search(lower):
        score += 10
    if 20 <= duration <= 45:
        score += 10
    return _clamp(score)


def cta_score(text: str) -> int:
    lower = text.lower()
    score = 60
    if _contains_any(lower, SHARE_WORDS):
        score += 15
    if _contains_any(lower, DEBATE_WORDS):
        score += 20
    if _contains_any(lower, RELATABLE_WORDS):
        score += 15
    return _clamp(score)


def quality_score(window: ClipWindow, text: str, speech_seconds: float) -> int:
    duration = window.duration
    score = 70
    if 15 <= duration <= 60:
        score += 15
    if duration < 10 or duration > 90:
        score -= 20
    if text.rstrip().endswith((".", "!", "?")):
        score += 10
    if 30 <= len(text.split()) <= 150:
        score += 5
    if duration > 0 and speech_seconds / duration < 0.3:
        score -= 10  # Mostly silence
    score += 5 * window.boundary_quality - 5
    return _clamp(score)


def score_window(
    window: ClipWindow,
    features: TranscriptFeatures,
    config: ViralityConfig,
) -> Dict[str, int]:
    """
    Score one window on all five dimensions.

    Returns:
        Dict keyed by dimension name
    """
    text = features.text_between(window.start_sec, window.end_sec)
    opening = features.text_between(
        window.start_sec, min(window.end_sec, window.start_sec + config.hook_window_seconds)
    )
    return {
        "hook": hook_score(opening),
        "emotion": emotion_score(text),
        "insight": insight_score(text, window.duration),
        "cta": cta_score(text),
        "quality": quality_score(
            window, text, features.speech_seconds(window.start_sec, window.end_sec)
        ),
    }

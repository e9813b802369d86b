"""
Curriculum Path Codec

Maps a structured curriculum path (grade, subject, topic, subtopic) to a flat
topic key and back.

The structured path is the canonical form. The flat key is only an index:
decoding a key is best-effort and lossy for keys this codec did not produce.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "_"
IDENTIFIER_SEPARATOR = "-"

DEFAULT_GRADE = "primary-6"
DEFAULT_SUBJECT = "mathematics"
DEFAULT_TOPIC = "algebra"

# Topic directories shipped with the curriculum
DEFAULT_KNOWN_TOPICS = (
    "fractions",
    "percentage",
    "ratio",
    "distance-time-speed",
    "algebra",
    "area-circumference-circle",
    "volume-cube-cuboid",
)


@dataclass(frozen=True)
class CurriculumPath:
    """Location of a subtopic in the curriculum hierarchy."""
    grade: str
    subject: str
    topic: str
    subtopic: str

    def as_dict(self) -> dict:
        return {
            "grade": self.grade,
            "subject": self.subject,
            "topic": self.topic,
            "subtopic": self.subtopic,
        }


def path_to_topic_key(path: CurriculumPath) -> str:
    """
    Flatten a curriculum path into a topic key.

    Args:
        path: Structured curriculum path

    Returns:
        Key such as "primary_6_mathematics_algebra_simple_expressions"
    """
    key = KEY_SEPARATOR.join([path.grade, path.subject, path.topic, path.subtopic])
    return key.replace(IDENTIFIER_SEPARATOR, KEY_SEPARATOR)


def topic_key_to_path(
    topic_key: str,
    known_topics: Iterable[str] = DEFAULT_KNOWN_TOPICS
) -> CurriculumPath:
    """
    Reconstruct a curriculum path from a topic key (best-effort).

    Keys that start with a grade token pair such as "primary_6" are decoded as
    grade, subject, topic and subtopic. Anything else falls back to the default
    grade and subject, with the remainder read as topic + subtopic.

    Args:
        topic_key: Flat key
        known_topics: Multi-word topic identifiers to recognise

    Returns:
        CurriculumPath (identifiers use "-" as the word separator)
    """
    if not topic_key or not topic_key.strip():
        raise ValueError("topic_key must be a non-empty string")

    tokens = [token for token in topic_key.strip().split(KEY_SEPARATOR) if token]
    if not tokens:
        raise ValueError(f"topic_key '{topic_key}' has no identifier tokens")

    if _starts_with_grade(tokens) and len(tokens) >= 5:
        grade = IDENTIFIER_SEPARATOR.join(tokens[:2])
        subject = tokens[2]
        topic, subtopic = _split_topic(tokens[3:], known_topics)
        return CurriculumPath(grade=grade, subject=subject, topic=topic, subtopic=subtopic)

    if len(tokens) >= 2:
        topic, subtopic = _split_topic(tokens, known_topics)
        return CurriculumPath(
            grade=DEFAULT_GRADE,
            subject=DEFAULT_SUBJECT,
            topic=topic,
            subtopic=subtopic
        )

    return CurriculumPath(
        grade=DEFAULT_GRADE,
        subject=DEFAULT_SUBJECT,
        topic=DEFAULT_TOPIC,
        subtopic=tokens[0]
    )


def resolve_curriculum_path(
    path: Optional[CurriculumPath],
    topic_key: Optional[str]
) -> CurriculumPath:
    """
    Pick the canonical curriculum path for a request.

    An explicit path always wins; a key is only decoded when no path was sent.
    """
    if path is not None:
        return path
    if not topic_key:
        raise ValueError("Either a curriculum path or a topic key is required")

    decoded = topic_key_to_path(topic_key)
    logger.warning(
        f"⚠️ [CurriculumPath] Decoded path from topic key '{topic_key}' -> "
        f"{path_to_topic_key(decoded)} (best-effort)"
    )
    return decoded


def _starts_with_grade(tokens: List[str]) -> bool:
    """True for keys starting with e.g. "primary_6" or "secondary_2"."""
    return len(tokens) >= 2 and tokens[0].isalpha() and tokens[1].isdigit()


def _split_topic(tokens: List[str], known_topics: Iterable[str]) -> Tuple[str, str]:
    """Split remaining tokens into (topic, subtopic), preferring the longest known topic."""
    candidates = sorted(
        (topic.split(IDENTIFIER_SEPARATOR) for topic in known_topics),
        key=len,
        reverse=True
    )
    for topic_tokens in candidates:
        if len(tokens) > len(topic_tokens) and tokens[:len(topic_tokens)] == topic_tokens:
            return (
                IDENTIFIER_SEPARATOR.join(topic_tokens),
                IDENTIFIER_SEPARATOR.join(tokens[len(topic_tokens):])
            )

    return tokens[0], IDENTIFIER_SEPARATOR.join(tokens[1:])

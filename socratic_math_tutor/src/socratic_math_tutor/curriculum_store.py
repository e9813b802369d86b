"""
Curriculum Content Store

Loads the mastery progression and completion policy for a curriculum path.

Content lives in JSON files laid out as
<root>/<grade>/<subject>/<topic>/<subtopic>.json. A missing or malformed file
is fatal for the turn: there is no default content.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field, AliasChoices, ValidationError, model_validator

from socratic_math_tutor.curriculum_path import CurriculumPath, path_to_topic_key
from socratic_math_tutor.errors import ContentUnavailable

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class MasteryStep(BaseModel):
    """One named concept step of a subtopic's mastery progression."""
    step: int = Field(ge=1)
    concept: str = Field(min_length=1)
    sample_question: str = ""
    question_count: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices("question_count", "min_questions")
    )
    mastery_criteria: str = ""


class CompletionPolicy(BaseModel):
    """Rule deciding when a subtopic session is finished."""
    requires_all_steps: bool = False
    total_questions: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("total_questions", "min_total_questions")
    )


class CurriculumContent(BaseModel):
    """Curriculum data the tutoring core needs for one subtopic."""
    id: Optional[str] = None
    path: Optional[CurriculumPath] = None
    name: str = ""
    learning_objective: str = ""
    intro_context: str = ""
    mastery_progression: List[MasteryStep] = Field(default_factory=list)
    completion_policy: CompletionPolicy = Field(default_factory=CompletionPolicy)

    @model_validator(mode="before")
    @classmethod
    def _lift_metadata_name(cls, data: Any) -> Any:
        # Authoring files keep the display name under metadata.name
        if isinstance(data, dict) and not data.get("name"):
            metadata = data.get("metadata") or {}
            if isinstance(metadata, dict) and metadata.get("name"):
                data = {**data, "name": metadata["name"]}
        return data

    @model_validator(mode="after")
    def _check_progression(self) -> "CurriculumContent":
        expected = list(range(1, len(self.mastery_progression) + 1))
        actual = [step.step for step in self.mastery_progression]
        if actual != expected:
            raise ValueError(f"mastery steps must be numbered 1..n in order, got {actual}")

        concepts = [step.concept for step in self.mastery_progression]
        if len(set(concepts)) != len(concepts):
            raise ValueError("concept names must be unique within a progression")
        return self


class CurriculumStore(ABC):
    """Read-only access to curriculum content."""

    @abstractmethod
    async def get_content(self, path: CurriculumPath) -> CurriculumContent:
        """
        Load content for a curriculum path.

        Raises:
            ContentUnavailable: No usable content exists for the path
        """


class InMemoryCurriculumStore(CurriculumStore):
    """Curriculum content held in a dict keyed by topic key."""

    def __init__(self, contents: Optional[Dict[str, CurriculumContent]] = None):
        self._contents: Dict[str, CurriculumContent] = dict(contents or {})

    def add(self, path: CurriculumPath, content: CurriculumContent):
        self._contents[path_to_topic_key(path)] = content

    async def get_content(self, path: CurriculumPath) -> CurriculumContent:
        content = self._contents.get(path_to_topic_key(path))
        if content is None:
            raise ContentUnavailable(f"No curriculum content for {path_to_topic_key(path)}")
        return content


class JsonCurriculumStore(CurriculumStore):
    """
    Curriculum content read from JSON files on disk.

    Parsed files are cached per path for the lifetime of the store.
    """

    def __init__(self, root: str):
        """
        Initialize JsonCurriculumStore.

        Args:
            root: Directory holding <grade>/<subject>/<topic>/<subtopic>.json
        """
        self.root = Path(root)
        self._cache: Dict[str, CurriculumContent] = {}

    def file_for(self, path: CurriculumPath) -> Path:
        """Location of the JSON file for a path."""
        for identifier in (path.grade, path.subject, path.topic, path.subtopic):
            if not _IDENTIFIER_PATTERN.match(identifier or ""):
                raise ContentUnavailable(f"Invalid curriculum identifier: '{identifier}'")
        return self.root / path.grade / path.subject / path.topic / f"{path.subtopic}.json"

    async def get_content(self, path: CurriculumPath) -> CurriculumContent:
        key = path_to_topic_key(path)
        if key in self._cache:
            return self._cache[key]

        file_path = self.file_for(path)
        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            logger.error(f"❌ [CurriculumStore] Curriculum file not found: {file_path}")
            raise ContentUnavailable(f"Curriculum file not found for {key}") from e
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ [CurriculumStore] Could not read {file_path}: {e}")
            raise ContentUnavailable(f"Curriculum file unreadable for {key}") from e

        if not isinstance(raw, dict):
            raise ContentUnavailable(f"Curriculum content invalid for {key}")

        try:
            content = CurriculumContent.model_validate({**raw, "path": path.as_dict()})
        except ValidationError as e:
            logger.error(f"❌ [CurriculumStore] Invalid curriculum content in {file_path}: {e}")
            raise ContentUnavailable(f"Curriculum content invalid for {key}") from e

        if not content.mastery_progression:
            logger.warning(f"⚠️ [CurriculumStore] {key} has no mastery progression")

        self._cache[key] = content
        logger.info(f"📚 [CurriculumStore] Loaded {key} ({len(content.mastery_progression)} steps)")
        return content

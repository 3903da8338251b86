"""Prompt templates used by the intelligence service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

logger = logging.getLogger(__name__)

RECOMMENDATIONS_TEMPLATE = """
You are a well-read friend who knows movies, music and games equally well.
Here is the person's collection, one item per line:

{{COLLECTION_SUMMARY}}

Suggest 5 titles they do not already have. Mix media types when it fits their taste.
Respond with a JSON array only, no prose, using this shape:
[
  {
    "title": "Title",
    "media_type": "movie | music | game",
    "creator": "Director, artist or studio",
    "reason": "One sentence on why it fits",
    "genre": "Primary genre",
    "release_year": 2020
  }
]
"""

INSIGHTS_TEMPLATE = """
You are looking over someone's personal media collection:

{{COLLECTION_SUMMARY}}

Write a short, friendly commentary (three or four paragraphs) on what the collection
says about their taste: recurring genres and creators, how movies, music and games
relate, what they are currently into, and one or two gaps worth exploring.
Plain text only.
"""

NL_SEARCH_TEMPLATE = """
Translate this collection search into structured filters:

"{{QUERY}}"

Allowed keys: media_type (movie, music or game), status (owned, wishlist,
currently_using or completed), genre, creator, title, release_year_min,
release_year_max, rating_min. Leave out keys the query does not imply.
Respond with a single JSON object only.
"""

MOOD_DISCOVERY_TEMPLATE = """
The person says they are in the mood for: "{{MOOD}}"

Their collection:

{{COLLECTION_SUMMARY}}

Pick up to 5 items from the collection that match the mood and suggest up to 3 new
titles. Respond with a JSON object only:
{
  "interpretation": "How you read the mood",
  "from_collection": [{"title": "", "media_type": "", "reason": ""}],
  "new_suggestions": [{"title": "", "media_type": "", "creator": "", "reason": ""}]
}
"""

DUPLICATE_DETECTION_TEMPLATE = """
Someone is adding a new item to their collection:
- Title: {{NEW_TITLE}}
- Type: {{MEDIA_TYPE}}
- Creator: {{CREATOR}}

Existing items:
{{EXISTING_ITEMS}}

Decide whether the new item is the same work as an existing one (remasters,
alternate spellings and editions count as duplicates; sequels do not).
Respond with a JSON object only:
{"is_duplicate": false, "reason": "short explanation", "match_title": "existing title or empty"}
"""

PROMPT_NAMES: tuple[str, ...] = (
    "recommendations",
    "insights",
    "nl_search",
    "mood_discovery",
    "duplicate_detection",
)

DEFAULT_TEMPLATES: Mapping[str, str] = MappingProxyType(
    {
        "recommendations": RECOMMENDATIONS_TEMPLATE,
        "insights": INSIGHTS_TEMPLATE,
        "nl_search": NL_SEARCH_TEMPLATE,
        "mood_discovery": MOOD_DISCOVERY_TEMPLATE,
        "duplicate_detection": DUPLICATE_DETECTION_TEMPLATE,
    }
)


@dataclass(frozen=True)
class PromptLibrary:
    """Read-only set of named prompt templates."""

    templates: Mapping[str, str] = field(default_factory=lambda: DEFAULT_TEMPLATES)

    def __post_init__(self) -> None:
        missing = [name for name in PROMPT_NAMES if name not in self.templates]
        if missing:
            raise ValueError(f"Missing prompt templates: {', '.join(missing)}")
        object.__setattr__(self, "templates", MappingProxyType(dict(self.templates)))

    @classmethod
    def from_directory(cls, directory: Path) -> "PromptLibrary":
        """Load ``<name>.txt`` overrides from ``directory``.

        Names without a file keep their built-in template.
        """

        templates = dict(DEFAULT_TEMPLATES)
        for name in PROMPT_NAMES:
            path = directory / f"{name}.txt"
            if path.is_file():
                templates[name] = path.read_text(encoding="utf-8")
                logger.info("Loaded prompt override %s from %s", name, path)
        return cls(templates)

    def render(self, name: str, **values: str) -> str:
        """Substitute ``{{KEY}}`` placeholders in the named template."""

        try:
            prompt = self.templates[name]
        except KeyError as exc:
            raise KeyError(f"Unknown prompt template: {name}") from exc
        for key, value in values.items():
            prompt = prompt.replace("{{" + key.upper() + "}}", value)
        return prompt

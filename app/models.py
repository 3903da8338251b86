"""Pydantic models describing collection items and AI results."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MediaType = Literal["movie", "music", "game"]
ItemStatus = Literal["owned", "wishlist", "currently_using", "completed"]


class CollectionItem(BaseModel):
    """A single entry of a user's media collection, as summarised for prompts."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    media_type: MediaType = Field(
        validation_alias=AliasChoices("media_type", "mediaType", "type")
    )
    creator: str = ""
    genre: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("genre", "genres")
    )
    status: ItemStatus = "owned"

    @field_validator("genre", mode="before")
    @classmethod
    def _coerce_genre(cls, value: object) -> object:
        """Accept a comma separated string as well as a list."""

        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class Recommendation(BaseModel):
    """A media title suggested by the model."""

    title: str
    media_type: str = ""
    creator: str = ""
    reason: str = ""
    genre: str = ""
    release_year: int | None = None

    @field_validator("release_year", mode="before")
    @classmethod
    def _zero_year_is_unknown(cls, value: object) -> object:
        if value in (0, "", "0"):
            return None
        return value


class NLSearchResult(BaseModel):
    """Structured filters parsed from a natural-language search query."""

    query: str
    filters: dict[str, Any] = Field(default_factory=dict)


class MoodResult(BaseModel):
    """Collection items and fresh suggestions matching a described mood."""

    mood: str = ""
    interpretation: str | None = None
    from_collection: list[dict[str, Any]] | None = None
    new_suggestions: list[dict[str, Any]] | None = None


class DuplicateResult(BaseModel):
    """Verdict on whether a new item already exists in the collection."""

    is_duplicate: bool = False
    reason: str | None = None
    match_title: str | None = None

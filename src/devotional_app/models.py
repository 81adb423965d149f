#!src/devotional_app/models.py
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from devotional_app.db.schema import MOOD_CATEGORIES

SPREAD_CODE_PATTERN = r"^[A-Z0-9]+-\d{3}$"


class SpreadSeed(BaseModel):
    """One catalog entry, validated before it reaches the store.

    Attributes:
        spread_code: Unique code such as ``GEN-001``.
        testament: ``OT`` or ``NT``.
        book: Book name.
        start_chapter: First chapter of the range.
        start_verse: First verse of the range.
        end_chapter: Last chapter of the range.
        end_verse: Last verse of the range.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    spread_code: str = Field(pattern=SPREAD_CODE_PATTERN)
    testament: Literal["OT", "NT"]
    book: str = Field(min_length=1)

    start_chapter: int = Field(ge=1)
    start_verse: int = Field(ge=1)
    end_chapter: int = Field(ge=1)
    end_verse: int = Field(ge=1)

    title: Optional[str] = None

    kjv_passage_ref: Optional[str] = None
    kjv_passage_text: Optional[str] = None
    kjv_key_verse_ref: Optional[str] = None
    kjv_key_verse_text: Optional[str] = None

    niv_passage_ref: Optional[str] = None
    niv_passage_text: Optional[str] = None
    niv_key_verse_ref: Optional[str] = None
    niv_key_verse_text: Optional[str] = None

    web_passage_text: Optional[str] = None
    mood_category: Optional[str] = None

    @field_validator("mood_category")
    @classmethod
    def _mood_known(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        mood = v.upper()
        if mood not in MOOD_CATEGORIES:
            raise ValueError(f"mood_category must be one of {', '.join(MOOD_CATEGORIES)}")
        return mood

    @model_validator(mode="after")
    def _range_ordered(self) -> "SpreadSeed":
        if (self.end_chapter, self.end_verse) < (self.start_chapter, self.start_verse):
            raise ValueError(
                f"Verse range ends before it starts for {self.spread_code}"
            )
        return self

    def content_fields(self) -> dict[str, Optional[str]]:
        return self.model_dump(
            exclude={
                "spread_code",
                "testament",
                "book",
                "start_chapter",
                "start_verse",
                "end_chapter",
                "end_verse",
            }
        )

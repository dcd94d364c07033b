from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

TITLE_REQUIRED = "Title is required"
AUTHOR_REQUIRED = "Author is required"
YEAR_INVALID = "Year must be a positive number"

# Largest value a SQLite INTEGER column can hold.
MAX_STORE_INT = 2**63 - 1

# Error types raised by the validators below; the HTTP layer reports their messages verbatim.
BOOK_ERROR_TYPES = frozenset({"title_required", "author_required", "year_invalid"})


def _non_blank(value: Any, error_type: str, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PydanticCustomError(error_type, message)
    return value


def _non_negative_year(value: Any) -> int:
    # bool is an int subclass, but JSON true/false is not a year
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PydanticCustomError("year_invalid", YEAR_INVALID)
    if isinstance(value, float):
        if not value.is_integer():
            raise PydanticCustomError("year_invalid", YEAR_INVALID)
        value = int(value)
    if value < 0 or value > MAX_STORE_INT:
        raise PydanticCustomError("year_invalid", YEAR_INVALID)
    return value


def _object_or_empty(data: Any) -> Any:
    # a JSON array or scalar body carries no fields
    return data if isinstance(data, (dict, BaseModel)) else {}


class Book(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    year: int | None = None
    created_at: str


class CreateBook(BaseModel):
    # validate_default makes a missing title/author fail with the same message as a blank one
    title: str = Field(default=None, validate_default=True)
    author: str = Field(default=None, validate_default=True)
    year: int | None = None

    @model_validator(mode="before")
    @classmethod
    def coerce_body(cls, data: Any) -> Any:
        return _object_or_empty(data)

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value: Any) -> str:
        return _non_blank(value, "title_required", TITLE_REQUIRED)

    @field_validator("author", mode="before")
    @classmethod
    def check_author(cls, value: Any) -> str:
        return _non_blank(value, "author_required", AUTHOR_REQUIRED)

    @field_validator("year", mode="before")
    @classmethod
    def check_year(cls, value: Any) -> int:
        return _non_negative_year(value)


class UpdateBook(BaseModel):
    """Partial update: only fields present in the payload are applied.

    Present fields follow the same rules as :class:`CreateBook`, except that an
    explicit ``year: null`` clears the stored year.
    """

    title: str | None = None
    author: str | None = None
    year: int | None = None

    @model_validator(mode="before")
    @classmethod
    def coerce_body(cls, data: Any) -> Any:
        return _object_or_empty(data)

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value: Any) -> str:
        return _non_blank(value, "title_required", TITLE_REQUIRED)

    @field_validator("author", mode="before")
    @classmethod
    def check_author(cls, value: Any) -> str:
        return _non_blank(value, "author_required", AUTHOR_REQUIRED)

    @field_validator("year", mode="before")
    @classmethod
    def check_year(cls, value: Any) -> int | None:
        if value is None:
            return None
        return _non_negative_year(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

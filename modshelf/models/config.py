"""
Pydantic model for application settings.
Provides validation for the repository roots and engine tunables.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAX_WORKERS = 4
DEFAULT_CACHE_CAPACITY = 5
DEFAULT_DEBOUNCE_MS = 500


class Settings(BaseModel):
    """
    Validated settings. Field aliases match the keys of ``settings.json`` so
    files written by earlier releases keep loading.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    # Repository roots
    mods_root: Path | None = Field(default=None, alias="modsRoot")
    images_root: Path | None = Field(default=None, alias="imagesRoot")

    # Engine tunables
    seven_zip_path: Path | None = Field(default=None, alias="sevenZipPath")
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, alias="maxWorkers")
    cache_capacity: int = Field(default=DEFAULT_CACHE_CAPACITY, alias="cacheCapacity")
    debounce_ms: int = Field(default=DEFAULT_DEBOUNCE_MS, alias="debounceMs")

    @field_validator("mods_root", "images_root", "seven_zip_path", mode="before")
    @classmethod
    def empty_path_is_unset(cls, v):
        """Treats empty strings as "not configured"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("mods_root", "images_root", "seven_zip_path")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of refresh workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("cache_capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Cache capacity must be at least 1.")
        return v

    @field_validator("debounce_ms")
    @classmethod
    def validate_debounce(cls, v: int) -> int:
        if v < 0 or v > 60_000:
            raise ValueError("Debounce must be between 0 and 60000 milliseconds.")
        return v

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    def to_json_dict(self) -> dict:
        """Serializes with the on-disk key names, omitting unset roots."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

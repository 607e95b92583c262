"""
Data Models Layer.

This package contains the dataclasses and Pydantic models that define the core
data structures used throughout the application: settings, characters, mods and
operation reports.
"""

from .config import Settings
from .mods import (
    ArchiveEntryRecord,
    Character,
    CharacterInfo,
    EmbeddedMetadata,
    FlatArchiveMod,
    FolderMod,
    ModDetails,
    ModEntry,
    ModView,
    PreviewImage,
)
from .reports import ActivationReport, NormalizeReport, ReconcileReport, RenameOutcome

__all__ = [
    "ActivationReport",
    "ArchiveEntryRecord",
    "Character",
    "CharacterInfo",
    "EmbeddedMetadata",
    "FlatArchiveMod",
    "FolderMod",
    "ModDetails",
    "ModEntry",
    "ModView",
    "NormalizeReport",
    "PreviewImage",
    "ReconcileReport",
    "RenameOutcome",
    "Settings",
]

"""SQLAlchemy ORM models for the VARA API."""

from app.models.catalog import Genre, Instrument, Mood, Song, SubGenre
from app.models.usage import AIQueryUsage
from app.models.user import User, UserTasteProfile

__all__ = [
    "AIQueryUsage",
    "Genre",
    "Instrument",
    "Mood",
    "Song",
    "SubGenre",
    "User",
    "UserTasteProfile",
]

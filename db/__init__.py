from .database import init_db, get_db, make_engine, engine, SessionLocal
from .models import (
    Base, PropertyRow, PlatformAliasRow, SnapshotRow, GroupRow, GroupPropertyRow,
    GroupSnapshotRow, DebugLogRow, ReviewTextRow, ReviewAnalysisRow, TABLES,
)
from .store import RowStore, SqlRowStore
from .repository import ReputationRepository, LatestScores, NotFoundError

__all__ = [
    "init_db", "get_db", "make_engine", "engine", "SessionLocal",
    "Base", "PropertyRow", "PlatformAliasRow", "SnapshotRow", "GroupRow", "GroupPropertyRow",
    "GroupSnapshotRow", "DebugLogRow", "ReviewTextRow", "ReviewAnalysisRow", "TABLES",
    "RowStore", "SqlRowStore",
    "ReputationRepository", "LatestScores", "NotFoundError",
]

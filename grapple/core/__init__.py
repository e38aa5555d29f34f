"""Core application utilities."""

from .changes import (
    ChangeEvent,
    ChangeFeed,
    ChangeFilter,
    ChangeOp,
    change_feed,
    pop_staged_changes,
    stage_change,
)
from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    dialect_insert,
    engine,
    get_session,
    get_session_factory,
    init_db,
    unit_of_work,
)
from .dependencies import (
    BearerCredentials,
    ChangeFeedDep,
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    SessionFactoryDep,
    authenticate,
    get_change_feed,
    get_current_user,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_factory",
    "unit_of_work",
    "dialect_insert",
    "init_db",
    "close_db",
    # Change feed
    "ChangeEvent",
    "ChangeFeed",
    "ChangeFilter",
    "ChangeOp",
    "change_feed",
    "stage_change",
    "pop_staged_changes",
    # Dependencies
    "CurrentUser",
    "authenticate",
    "get_current_user",
    "get_change_feed",
    "CurrentUserDep",
    "SessionDep",
    "SessionFactoryDep",
    "BearerCredentials",
    "ChangeFeedDep",
    # Security
    "create_access_token",
    "decode_token",
]

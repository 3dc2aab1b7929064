"""
Identity lookups for cost breakdowns.

Resolves user emails and model names so reports can show human labels, and
lists the users and models known to the gateway. Every lookup degrades to
``None`` (or an empty list) on failure; callers then show the raw id.
"""

import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .db import get_readonly_connection
from .models import ModelInfo, UserInfo

logger = logging.getLogger(__name__)

_USER_INFO_SQL = """
    SELECT u.user_id,
           u.user_email,
           coalesce(substr(u.created_at, 1, 10), ''),
           (SELECT count(*) FROM api_keys ak WHERE ak.user_id = u.user_id),
           (SELECT count(*) FROM api_keys ak
             WHERE ak.user_id = u.user_id AND NOT coalesce(ak.is_disabled, 0)),
           (SELECT count(*) FROM inference_profiles ip WHERE ip.user_id = u.user_id)
    FROM users u
"""

_MODEL_INFO_SQL = """
    SELECT m.model_id,
           m.model_name,
           coalesce(m.is_disabled, 0),
           coalesce(m.protected, 0),
           (SELECT count(DISTINCT ip.user_id) FROM inference_profiles ip
             WHERE ip.model_id = m.model_id)
    FROM models m
"""


def _normalize_uuid(value: str) -> Optional[str]:
    try:
        return str(uuid.UUID(value))
    except (ValueError, AttributeError, TypeError):
        return None


def _user_info(row: Sequence[Any]) -> UserInfo:
    return UserInfo(
        user_id=row[0],
        user_email=row[1],
        created_at=row[2],
        api_key_count=row[3],
        active_api_key_count=row[4],
        inference_profile_count=row[5],
    )


def _model_info(row: Sequence[Any]) -> ModelInfo:
    return ModelInfo(
        model_id=row[0],
        model_name=row[1],
        is_disabled=bool(row[2]),
        protected=bool(row[3]),
        user_count=row[4],
    )


class GatewayDirectory:
    """Read-only view of the gateway's ``users`` and ``models`` tables.

    Key and profile counts come from the ``api_keys`` and
    ``inference_profiles`` tables.
    """

    def __init__(self, db_path: Optional[str]):
        self.db_path = db_path

    def _rows(self, sql: str, params: Tuple = ()) -> Optional[List[Tuple]]:
        if not self.db_path:
            return None
        try:
            conn = get_readonly_connection(self.db_path)
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.debug("Directory query failed (%s): %s", params, e)
            return None

    def _scalar(self, sql: str, param: str) -> Optional[str]:
        rows = self._rows(sql, (param,))
        return rows[0][0] if rows else None

    def user_email_for(self, user_id: str) -> Optional[str]:
        normalized = _normalize_uuid(user_id)
        if normalized is None:
            return None
        return self._scalar(
            "SELECT user_email FROM users WHERE lower(user_id) = ?", normalized
        )

    def model_name_for(self, model_id: str) -> Optional[str]:
        normalized = _normalize_uuid(model_id)
        if normalized is None:
            return None
        return self._scalar(
            "SELECT model_name FROM models WHERE lower(model_id) = ?", normalized
        )

    def user_id_for_email(self, email: str) -> Optional[str]:
        return self._scalar("SELECT user_id FROM users WHERE user_email = ?", email)

    def list_users(self) -> List[Tuple[str, str]]:
        """All (user_id, user_email) pairs ordered by email."""
        rows = self._rows("SELECT user_id, user_email FROM users ORDER BY user_email")
        return [(row[0], row[1]) for row in rows or []]

    def list_models(self) -> List[Tuple[str, str]]:
        """All (model_id, model_name) pairs ordered by name."""
        rows = self._rows("SELECT model_id, model_name FROM models ORDER BY model_name")
        return [(row[0], row[1]) for row in rows or []]

    def user_info(self, user_id: str) -> Optional[UserInfo]:
        normalized = _normalize_uuid(user_id)
        if normalized is None:
            return None
        rows = self._rows(_USER_INFO_SQL + " WHERE lower(u.user_id) = ?", (normalized,))
        return _user_info(rows[0]) if rows else None

    def model_info(self, model_id: str) -> Optional[ModelInfo]:
        normalized = _normalize_uuid(model_id)
        if normalized is None:
            return None
        rows = self._rows(_MODEL_INFO_SQL + " WHERE lower(m.model_id) = ?", (normalized,))
        return _model_info(rows[0]) if rows else None


class StaticDirectory:
    """In-memory directory, used in demo mode and tests.

    Holds names only, so info entries carry no key or profile counts.
    """

    def __init__(self, users: Dict[str, str], models: Dict[str, str]):
        self.users = dict(users)
        self.models = dict(models)

    def user_email_for(self, user_id: str) -> Optional[str]:
        return self.users.get(user_id)

    def model_name_for(self, model_id: str) -> Optional[str]:
        return self.models.get(model_id)

    def user_id_for_email(self, email: str) -> Optional[str]:
        for user_id, user_email in self.users.items():
            if user_email == email:
                return user_id
        return None

    def list_users(self) -> List[Tuple[str, str]]:
        return sorted(self.users.items(), key=lambda item: item[1])

    def list_models(self) -> List[Tuple[str, str]]:
        return sorted(self.models.items(), key=lambda item: item[1])

    def user_info(self, user_id: str) -> Optional[UserInfo]:
        email = self.users.get(user_id)
        return UserInfo(user_id, email) if email is not None else None

    def model_info(self, model_id: str) -> Optional[ModelInfo]:
        name = self.models.get(model_id)
        return ModelInfo(model_id, name) if name is not None else None

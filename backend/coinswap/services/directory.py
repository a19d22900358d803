from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from coinswap import models


@dataclass(frozen=True)
class PublicProfile:
    id: str
    username: str
    display_name: str | None
    avatar_url: str | None


@dataclass(frozen=True)
class CallerIdentity:
    id: str
    role: models.UserRole


def _to_profile(user: models.User) -> PublicProfile:
    return PublicProfile(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )


def get_public_profile(db: Session, user_id: str) -> Optional[PublicProfile]:
    user = db.get(models.User, str(user_id))
    return _to_profile(user) if user is not None else None


def get_public_profiles(db: Session, user_ids: Iterable[str]) -> dict[str, PublicProfile]:
    ids = {str(u) for u in user_ids if u}
    if not ids:
        return {}
    users = db.query(models.User).filter(models.User.id.in_(ids)).all()
    return {u.id: _to_profile(u) for u in users}


def get_caller_identity(db: Session, user_id: str) -> Optional[CallerIdentity]:
    user = db.get(models.User, str(user_id))
    if user is None:
        return None
    return CallerIdentity(id=user.id, role=user.role)

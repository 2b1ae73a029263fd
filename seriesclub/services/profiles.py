"""Persistence helpers for user profiles."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Profile
from ..errors import FetchFailure, WriteFailure
from ..models import ProfileUpdate, UserProfile
from ..utils import utcnow

logger = logging.getLogger(__name__)


async def ensure_profile_row(session: AsyncSession, user_id: str) -> Profile:
    """Return the profile row for ``user_id``, creating a bare one when missing."""

    profile = await session.get(Profile, user_id)
    if profile is None:
        logger.info("Creating missing profile for user %s", user_id)
        now = utcnow()
        profile = Profile(id=user_id, created_at=now, updated_at=now)
        session.add(profile)
        await session.flush()
    return profile


class ProfileStore:
    """CRUD access to the ``profiles`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_profile(self, user_id: str) -> UserProfile | None:
        try:
            async with self._session_factory() as session:
                profile = await session.get(Profile, user_id)
        except SQLAlchemyError as exc:
            logger.exception("Profile lookup failed for %s", user_id)
            raise FetchFailure("profile", f"Unable to load profile {user_id}") from exc
        if profile is None:
            return None
        return UserProfile.model_validate(profile)

    async def list_profiles(self) -> list[UserProfile]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Profile).order_by(Profile.created_at))
                profiles = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Listing profiles failed")
            raise FetchFailure("profiles") from exc
        return [UserProfile.model_validate(profile) for profile in profiles]

    async def upsert_profile(self, user_id: str, update: ProfileUpdate) -> UserProfile:
        """Create or patch a profile; only fields set on ``update`` are written."""

        changes = update.model_dump(exclude_unset=True)
        try:
            async with self._session_factory() as session:
                profile = await ensure_profile_row(session, user_id)
                for key, value in changes.items():
                    setattr(profile, key, value)
                profile.updated_at = utcnow()
                await session.commit()
                await session.refresh(profile)
        except SQLAlchemyError as exc:
            logger.exception("Saving profile %s failed", user_id)
            raise WriteFailure("profile") from exc
        return UserProfile.model_validate(profile)

    async def ensure_profile(self, user_id: str) -> UserProfile:
        try:
            async with self._session_factory() as session:
                profile = await ensure_profile_row(session, user_id)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Ensuring profile %s failed", user_id)
            raise WriteFailure("profile") from exc
        return UserProfile.model_validate(profile)

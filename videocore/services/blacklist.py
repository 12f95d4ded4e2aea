from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from videocore.core.config import Settings
from videocore.core.logging import get_logger
from videocore.db.models import BlacklistType, VideoBlacklist
from videocore.domain.descriptors import Requester, VideoDescriptor

AUTO_BLACKLIST_REASON = "Automatically blacklisted pending moderation review"


class AutoBlacklistPolicy:
    """Flags new local videos for review without blocking the write."""

    def __init__(self, settings: Settings):
        self.enabled = settings.auto_blacklist_enabled
        self.logger = get_logger(component="auto_blacklist")

    def should_blacklist(self, requester: Optional[Requester], *, is_remote: bool, is_new: bool) -> bool:
        if not self.enabled or is_remote or not is_new:
            return False
        return not (requester is not None and requester.can_bypass_blacklist)

    async def apply(
        self,
        session: AsyncSession,
        video: VideoDescriptor,
        requester: Optional[Requester],
        *,
        is_remote: bool,
        is_new: bool,
    ) -> bool:
        if not self.should_blacklist(requester, is_remote=is_remote, is_new=is_new):
            return False
        session.add(
            VideoBlacklist(
                video_id=video.id,
                type=BlacklistType.auto,
                reason=AUTO_BLACKLIST_REASON,
                unfederated=True,
            )
        )
        await session.flush()
        video.blacklisted = True
        self.logger.info("video_auto_blacklisted", video_uuid=video.uuid)
        return True


__all__ = ["AutoBlacklistPolicy", "AUTO_BLACKLIST_REASON"]

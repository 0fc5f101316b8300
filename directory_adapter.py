"""
GWS adapter for diffsync
"""

import logging
from typing import Callable, Iterable, Optional

from diffsync import Adapter
from diffsync.exceptions import ObjectAlreadyExists

from models import ExternalMemberRef, GroupMembership, MemberKind
from user_cache import CacheResult, CacheState, UserCache


logger = logging.getLogger(__name__)


class DirectoryAdapter(Adapter):
    """
    DiffSync adapter for the Groups Web Service.
    Holds the memberships one GWS group should have, keyed by RT user name.
    """

    membership = GroupMembership
    top_level = ["membership"]

    def __init__(self, *args, user_cache: Optional[UserCache] = None,
                 resolve_subject: Optional[Callable[[str], CacheResult]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_cache = user_cache if user_cache is not None else UserCache()
        self.resolve_subject = resolve_subject
        self.skipped_members = 0

    def _add_membership(self, user_name: str, group_name: str) -> bool:
        """Helper to create and add a membership object."""
        membership = GroupMembership(
            user_name=user_name,
            group_name=group_name
        )
        try:
            self.add(membership)
        except ObjectAlreadyExists:
            logger.debug(f"Duplicate member {user_name} in {group_name}, ignoring")
            return False
        return True

    def user_name_for(self, subject_id: str) -> Optional[str]:
        """Resolve a GWS subject id to an RT user name through the user cache."""
        result = self.user_cache.lookup(subject_id)
        if result.state is CacheState.NOT_CACHED and self.resolve_subject:
            result = self.resolve_subject(subject_id)
        if result.state is CacheState.INVALID:
            logger.debug(f"\t{subject_id}\tno valid RT user name, skipping")
            return None
        return result.name

    def load(self, group_name: str, members: Iterable[ExternalMemberRef]):
        """Load the memberships of one GWS group."""
        logger.debug(f"Loading GWS members of {group_name}")
        membership_count = 0

        for member in members:
            if member.kind is not MemberKind.PERSON:
                continue
            user_name = self.user_name_for(member.subject_id)
            if not user_name:
                self.skipped_members += 1
                continue
            if self._add_membership(user_name, group_name):
                membership_count += 1

        logger.debug(f"Loaded {membership_count} memberships from GWS for {group_name}")

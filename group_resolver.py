"""
Matching GWS groups to RT groups.

RT groups are looked up by name (the GWS group id) and by an anchor
attribute, ``UWRegID-<regid>``, that ties an RT group to a GWS group no
matter what it is called. When the two disagree the anchor wins and the
group holding the stale name is renamed out of the way.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from config import ANCHOR_ATTRIBUTE_PREFIX, SyncConfig
from rt_store import LocalGroup, RTStore, RTStoreError


logger = logging.getLogger(__name__)


class ResolutionOutcome(Enum):
    NAME_ONLY = "name-only"
    MATCHED = "matched"
    FOUND_BY_ANCHOR = "found-by-anchor"
    RELOCATED_NAME_HOLDER = "relocated-name-holder"
    REPLACED_FOREIGN_ANCHOR = "replaced-foreign-anchor"
    LINKED = "linked"
    NOT_FOUND = "not-found"


@dataclass
class GroupResolution:
    """
    The RT group a GWS group corresponds to.

    ``group`` is None when a new RT group has to be created. ``renamed``
    holds the (old, new) names of a group moved out of the way, if any.
    """

    group: Optional[LocalGroup]
    outcome: ResolutionOutcome
    renamed: Optional[tuple] = None

    @property
    def needs_create(self) -> bool:
        return self.group is None


class GroupResolver:

    def __init__(self, config: SyncConfig, store: RTStore, clock: Callable[[], float] = time.time):
        self.config = config
        self.store = store
        self.clock = clock

    def find_by_anchor(self, external_group_id: str) -> Optional[LocalGroup]:
        """Load the RT group carrying the anchor for a GWS regid."""
        return self.store.find_group_by_attribute(self.config.anchor_attribute(external_group_id))

    def has_any_anchor(self, group: LocalGroup) -> bool:
        return any(name.startswith(ANCHOR_ATTRIBUTE_PREFIX) for name in self.store.attribute_names(group))

    def resolve(self, external_id: str, external_group_id: Optional[str] = None) -> Optional[GroupResolution]:
        """
        Work out which RT group stands for the GWS group ``external_id``.

        Returns None if RT refused a rename or attribute write, in which
        case the group should be left alone this run.
        """
        group = self.store.load_group(external_id)
        if not external_group_id:
            return GroupResolution(group, ResolutionOutcome.NAME_ONLY)

        if group is None:
            logger.debug(f"No group in RT named {external_id}. Looking by {external_group_id} GWS id.")
            anchored = self.find_by_anchor(external_group_id)
            if anchored is None:
                logger.debug(f"No group in RT with GWS id {external_group_id}. Creating a new one.")
                return GroupResolution(None, ResolutionOutcome.NOT_FOUND)
            logger.debug(f"No group in RT named {external_id}, but found group {anchored.name} "
                         f"by GWS id {external_group_id}. Renaming the group.")
            return GroupResolution(anchored, ResolutionOutcome.FOUND_BY_ANCHOR)

        attr_name = self.config.anchor_attribute(external_group_id)
        if self.store.first_attribute(group, attr_name):
            return GroupResolution(group, ResolutionOutcome.MATCHED)

        other_group = self.find_by_anchor(external_group_id)
        if other_group is not None:
            logger.debug(f"Group with GWS id {external_group_id} exists as {other_group.name}, "
                         f"as well as group named {external_id}. Moving {external_id} out of the way.")
            outcome = ResolutionOutcome.RELOCATED_NAME_HOLDER
        elif self.has_any_anchor(group):
            logger.debug(f"No group in RT with GWS id {external_group_id}, but group {external_id} has id. "
                         f"Renaming the group and creating a new one.")
            outcome = ResolutionOutcome.REPLACED_FOREIGN_ANCHOR
        else:
            logger.debug(f"No group in RT with GWS id {external_group_id}, but group {external_id} exists "
                         f"and has no GWS id. Assigning the id to the group.")
            if not self.link(group, attr_name, external_group_id):
                return None
            return GroupResolution(group, ResolutionOutcome.LINKED)

        renamed = self.move_out_of_the_way(group)
        if renamed is None:
            return None
        return GroupResolution(other_group, outcome, renamed=renamed)

    def link(self, group: LocalGroup, attr_name: str, external_group_id: str) -> bool:
        if self.config.dry_run:
            logger.info(f"[DRY RUN] Group {group.name} gets GWS id {external_group_id}")
            return True
        try:
            self.store.set_attribute(group, attr_name, 1)
        except RTStoreError as e:
            logger.error(f"Couldn't set attribute: {e}")
            return False
        logger.info(f"Assigned {external_group_id} GWS group id to {group.name}")
        return True

    def move_out_of_the_way(self, group: LocalGroup) -> Optional[tuple]:
        """Rename a group that holds a name belonging to another GWS group."""
        old = group.name
        new = f"{old} (UWImport {int(self.clock())})"
        if self.config.dry_run:
            logger.info(f"[DRY RUN] Group {old} to be renamed to {new}")
            return (old, new)
        try:
            self.store.set_group_name(group, new)
        except RTStoreError as e:
            logger.error(f"Couldn't rename group from {old} to {new}: {e}")
            return None
        logger.info(f"Renamed group {old} to {new}")
        return (old, new)

"""
Import of PWS person records as RT users.

Each person is mapped to RT fields, loaded or created in RT, added to the
imported-members group and given any custom field values the mapping
declares. Nothing is written unless the run is applying changes.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from config import SyncConfig
from directory_client import PersonWebService
from field_mapper import build_object
from rt_store import USER_FIELD_ACCESSORS, LocalGroup, LocalUser, RTStore, RTStoreError
from user_cache import CacheResult, UserCache


logger = logging.getLogger(__name__)


SUBJECT_ID_FIELD = "UWNetID"

CUSTOM_FIELD_RE = re.compile(r"^(User)?CF\.", re.IGNORECASE)
CF_VALUE_RE = re.compile(r"^CF\.(.+)$", re.IGNORECASE)
USER_CF_RE = re.compile(r"^UserCF\.(.+)$", re.IGNORECASE)


@dataclass
class ImportCounts:
    processed: int = 0
    resolved: int = 0
    skipped: int = 0
    failed: int = 0


def show_field_info(fields: Mapping[str, str], accessors, rt_object=None):
    """Log each mapped field next to the value RT currently holds."""
    current = dict(accessors)
    logger.debug("\tRT Field\tRT Value -> GWS Value")
    for key in sorted(fields):
        old_value = None
        if rt_object is not None and key in current:
            old_value = current[key](rt_object)
            if fields[key] and old_value == fields[key]:
                old_value = 'unchanged'
        logger.debug(f"\t{key}\t{old_value or 'unset'} => {fields[key]}")


class UserReconciler:
    """Creates and updates RT users from directory person records."""

    def __init__(self, config: SyncConfig, store: RTStore, user_cache: UserCache,
                 pws: Optional[PersonWebService] = None):
        self.config = config
        self.store = store
        self.user_cache = user_cache
        self.pws = pws
        self._group: Optional[LocalGroup] = None

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def build_user(self, record: Mapping[str, Any]) -> Dict[str, str]:
        """Map a person record onto RT user fields, defaulting the email address."""
        user = build_object(record, self.config.user_mapping, skip=CUSTOM_FIELD_RE, reconciler=self)
        subject_id = record.get(SUBJECT_ID_FIELD)
        if not user.get("EmailAddress") and subject_id:
            user["EmailAddress"] = f"{subject_id}@{self.config.email_domain}"
        return user

    def cache_subject(self, subject_id: str) -> CacheResult:
        """Cache the user name a bare subject id maps to, without touching RT."""
        user = self.build_user({SUBJECT_ID_FIELD: subject_id})
        return self.user_cache.remember(subject_id, user.get("Name"))

    def fetch_person(self, subject_id: str) -> Dict[str, Any]:
        """The full PWS record for a subject, or a bare record if PWS has none."""
        entry = self.pws.lookup(subject_id) if self.pws else None
        return entry or {SUBJECT_ID_FIELD: subject_id}

    def import_users(self, records: Iterable[Mapping[str, Any]]) -> ImportCounts:
        counts = ImportCounts()
        records = list(records)
        if not records:
            logger.debug("No users found, no import")
            return counts

        total = len(records)
        for record in records:
            counts.processed += 1
            try:
                user = self.resolve_user(record)
            except Exception as e:
                counts.failed += 1
                logger.error(f"Failed to import user {record.get(SUBJECT_ID_FIELD)}: {e}", exc_info=True)
                continue
            if user is None:
                counts.skipped += 1
            else:
                counts.resolved += 1
            logger.debug(f"Imported {counts.processed}/{total} users")
        return counts

    def resolve_user(self, record: Mapping[str, Any]) -> Optional[LocalUser]:
        """
        Bring one person into RT.

        Returns the RT user when it was found or created, None when the
        record was skipped, creation was only simulated, or RT refused a write.
        """
        user = self.build_user(record)
        subject_id = record.get(SUBJECT_ID_FIELD) or user.get("Name", "")
        name = user.get("Name", "")

        if not name:
            logger.warning(f"No Name or EmailAddress for user, skipping {dict(record)!r}")
            if subject_id:
                self.user_cache.remember(subject_id, None)
            return None
        if name.isdigit():
            logger.debug(f"Skipping user '{name}', as it is numeric")
            self.user_cache.remember(subject_id, None)
            return None

        logger.debug(f"Processing user {name}")
        self.user_cache.remember(subject_id, name)

        rt_user = self.create_or_update_user(user)
        if rt_user is None:
            return None

        self.add_user_to_group(rt_user)
        self.add_custom_field_values(record)
        self.update_object_custom_field_values(rt_user, record)
        return rt_user

    def load_user(self, user: Mapping[str, str]) -> Optional[LocalUser]:
        rt_user = self.store.load_user(user.get("Name", ""))
        if rt_user is None:
            rt_user = self.store.load_user_by_email(user.get("EmailAddress", ""))
        return rt_user

    def create_or_update_user(self, user: Dict[str, str]) -> Optional[LocalUser]:
        """Load the user by name or email, then update or create according to policy."""
        rt_user = self.load_user(user)

        if rt_user is not None:
            message = f"User {user['Name']} already exists as {rt_user.id}"
            if not (self.config.update_users or self.config.update_only):
                logger.debug(f"{message}, skipping")
                return rt_user

            logger.debug(f"{message}, updating their data")
            if self.dry_run:
                logger.info(f"[DRY RUN] Found existing user {user['Name']} to update")
                show_field_info(user, USER_FIELD_ACCESSORS, rt_user)
                return rt_user
            try:
                results = self.store.update_user(rt_user, user)
            except RTStoreError as e:
                logger.error(f"Couldn't update user {user['Name']}: {e}")
                return None
            logger.debug('\n'.join(results) or 'no change')
            return rt_user

        if self.config.update_only:
            logger.debug(f"User {user['Name']} doesn't exist in RT, skipping")
            return None

        if self.dry_run:
            logger.info(f"[DRY RUN] Found new user {user['Name']} to create in RT")
            show_field_info(user, USER_FIELD_ACCESSORS)
            return None

        try:
            rt_user = self.store.create_user(user, privileged=self.config.create_privileged)
        except RTStoreError as e:
            logger.error(f"Couldn't create user for {user['Name']}: {e}")
            return None
        if rt_user is None:
            logger.error(f"We couldn't find or create {user['Name']}. This should never happen")
            return None
        logger.info(f"Created user for {user['Name']} with id {rt_user.id}")
        return rt_user

    def setup_group(self) -> Optional[LocalGroup]:
        """Load the imported-members group, creating it if needed."""
        if self._group is not None:
            return self._group

        group_name = self.config.imported_group_name
        group = self.store.load_group(group_name)
        if group is None:
            if self.dry_run:
                logger.info(f"[DRY RUN] Would create group {group_name}")
                return None
            try:
                group = self.store.create_group({"Name": group_name})
            except RTStoreError as e:
                logger.error(f"Can't create group {group_name} [{e}]")
                return None
            logger.info(f"Created group {group_name}")

        self._group = group
        return group

    def add_user_to_group(self, rt_user: LocalUser) -> bool:
        """Add the user to the imported-members group unless that is switched off."""
        if self.config.skip_autogenerated_group:
            return False

        group_name = self.config.imported_group_name
        group = self.setup_group()
        if group is not None and self.store.has_member(group, rt_user):
            logger.debug(f"{rt_user.name} already a member of {group_name}")
            return False

        if self.dry_run:
            logger.info(f"[DRY RUN] Would add {rt_user.name} to {group_name}")
            return False
        if group is None:
            return False

        try:
            self.store.add_member(group, rt_user)
        except RTStoreError as e:
            logger.error(f"Couldn't add {rt_user.name} to {group_name} [{e}]")
            return False
        logger.debug(f"Added {rt_user.name} to {group_name}")
        return True

    def add_custom_field_values(self, record: Mapping[str, Any]):
        """Add mapped values to select custom fields (CF.<name> entries) that lack them."""
        data = build_object(record, self.config.user_mapping, only=CF_VALUE_RE, reconciler=self)

        for rt_field, cfv_name in sorted(data.items()):
            cf_name = CF_VALUE_RE.match(rt_field).group(1)

            cf = self.store.load_custom_field(cf_name)
            if cf is None:
                logger.error(f"Couldn't load CF [{cf_name}]: not found")
                continue

            if self.store.custom_field_has_value(cf, cfv_name):
                logger.debug(f"Custom Field '{cf_name}' already has '{cfv_name}' for a value")
                continue

            if self.dry_run:
                logger.info(f"[DRY RUN] Would add '{cfv_name}' to Custom Field '{cf_name}'")
                continue

            try:
                self.store.add_custom_field_value(cf, cfv_name)
            except RTStoreError as e:
                logger.error(f"Couldn't add '{cfv_name}' to '{cf_name}' [{e}]")
                continue
            logger.debug(f"Added '{cfv_name}' to Custom Field '{cf_name}'")

    def update_object_custom_field_values(self, rt_user: LocalUser, record: Mapping[str, Any]):
        """Set the user's own custom field values (UserCF.<name> entries) when they changed."""
        targets = sorted(f for f in self.config.user_mapping if USER_CF_RE.match(f))
        if not targets:
            return
        data = build_object(record, self.config.user_mapping, only=USER_CF_RE, reconciler=self)

        for rt_field in targets:
            cf_name = USER_CF_RE.match(rt_field).group(1)
            value = data.get(rt_field, "")
            current = self.store.first_custom_field_value(rt_user, cf_name) or ""

            if not current and not value:
                logger.debug(f"\tCF.{cf_name}\tskipping, no value in RT and GWS")
                continue
            if current == value:
                logger.debug(f"\tCF.{cf_name}\tunchanged => {value}")
                continue

            logger.debug(f"\tCF.{cf_name}\t{current or 'unset'} => {value}")
            if self.dry_run:
                continue

            try:
                self.store.add_object_custom_field_value(rt_user, cf_name, value)
            except RTStoreError as e:
                logger.error(f"{rt_user.name}: Couldn't add value '{value}' for '{cf_name}': {e}")

"""
Configuration for the GWS to RT import.

All settings are read once from the environment (optionally seeded from a
.env file) into a SyncConfig that is handed to every component.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from field_mapper import Field, MappingSpec, mapping_from_config


logger = logging.getLogger(__name__)


ANCHOR_ATTRIBUTE_PREFIX = "UWRegID-"

DEFAULT_USER_MAPPING: MappingSpec = {
    "Name": Field("UWNetID"),
    "RealName": Field("DisplayName"),
    "EmailAddress": Field("EmailAddresses"),
}

DEFAULT_GROUP_MAPPING: MappingSpec = {
    "Name": Field("id"),
    "Description": Field("name"),
}


class ConfigError(Exception):
    """Raised when the environment does not describe a usable configuration."""


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _env_mapping(name: str, default: MappingSpec) -> MappingSpec:
    raw = os.getenv(name, "")
    if not raw.strip():
        return dict(default)
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"{name} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{name} must be a JSON object")
    try:
        return mapping_from_config(data)
    except TypeError as e:
        raise ConfigError(f"{name}: {e}")


def _env_sync_groups() -> Optional[Set[str]]:
    groups_config = os.getenv("SYNC_GROUPS", "")
    if not groups_config:
        return None
    return {g.strip() for g in groups_config.split(',') if g.strip()} or None


@dataclass
class SyncConfig:
    """Settings shared by every reconciler in a single run."""

    # Web services
    gws_host: str = ""
    pws_host: str = ""
    ws_cert_file: Optional[str] = None
    ws_key_file: Optional[str] = None
    ws_ca_cert_file: Optional[str] = None
    ws_timeout: float = 30.0

    # What to import
    group_stem: str = ""
    group_search: str = ""
    sync_groups: Optional[Set[str]] = None
    user_search: str = ""
    member_type: str = "uwnetid"

    # Policy
    email_domain: str = "uw.edu"
    imported_group_name: str = "Imported from GWS"
    skip_autogenerated_group: bool = False
    update_users: bool = False
    update_only: bool = False
    create_privileged: bool = False
    import_group_members: bool = False
    dry_run: bool = True

    user_mapping: MappingSpec = field(default_factory=lambda: dict(DEFAULT_USER_MAPPING))
    group_mapping: MappingSpec = field(default_factory=lambda: dict(DEFAULT_GROUP_MAPPING))

    store_file: str = "rt_store.json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Build the configuration from environment variables."""
        try:
            timeout = float(os.getenv("WS_TIMEOUT", "30"))
        except ValueError:
            raise ConfigError(f"WS_TIMEOUT must be a number, got {os.getenv('WS_TIMEOUT')!r}")

        config = cls(
            gws_host=os.getenv("GWS_HOST", "").rstrip("/"),
            pws_host=os.getenv("PWS_HOST", "").rstrip("/"),
            ws_cert_file=os.getenv("WS_CERT_FILE") or None,
            ws_key_file=os.getenv("WS_KEY_FILE") or None,
            ws_ca_cert_file=os.getenv("WS_CA_CERT_FILE") or None,
            ws_timeout=timeout,
            group_stem=os.getenv("GWS_GROUP_STEM", ""),
            group_search=os.getenv("GWS_GROUP_SEARCH", ""),
            sync_groups=_env_sync_groups(),
            user_search=os.getenv("PWS_USER_SEARCH", ""),
            member_type=os.getenv("GWS_MEMBER_TYPE", "uwnetid"),
            email_domain=os.getenv("GWS_EMAIL_DOMAIN", "uw.edu"),
            imported_group_name=os.getenv("GWS_GROUP_NAME", "") or "Imported from GWS",
            skip_autogenerated_group=_env_flag("GWS_SKIP_AUTOGENERATED_GROUP"),
            update_users=_env_flag("GWS_UPDATE_USERS"),
            update_only=_env_flag("GWS_UPDATE_ONLY"),
            create_privileged=_env_flag("GWS_CREATE_PRIVILEGED"),
            import_group_members=_env_flag("GWS_IMPORT_GROUP_MEMBERS"),
            dry_run=_env_flag("SYNC_DRY_RUN", "true"),
            user_mapping=_env_mapping("GWS_USER_MAPPING", DEFAULT_USER_MAPPING),
            group_mapping=_env_mapping("GWS_GROUP_MAPPING", DEFAULT_GROUP_MAPPING),
            store_file=os.getenv("RT_STORE_FILE", "rt_store.json"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        if config.sync_groups:
            logger.info(f"Loaded {len(config.sync_groups)} groups from config: {', '.join(sorted(config.sync_groups))}")
        return config

    @property
    def group_search_path(self) -> str:
        """The GWS search used to list groups, derived from the stem when not set explicitly."""
        if self.group_search:
            return self.group_search
        if self.group_stem:
            return f"search?stem={self.group_stem}&scope=all"
        return ""

    def anchor_attribute(self, external_group_id: str) -> str:
        return ANCHOR_ATTRIBUTE_PREFIX + external_group_id

    def missing_settings(self) -> Dict[str, str]:
        """Required settings that are unset, keyed by environment variable."""
        missing = {}
        if not self.gws_host:
            missing["GWS_HOST"] = "Groups Web Service base URL"
        if (self.import_group_members or self.user_search) and not self.pws_host:
            missing["PWS_HOST"] = "Person Web Service base URL (needed for member or user import)"
        return missing

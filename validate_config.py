#!/usr/bin/env python3
"""
Check that the GWS to RT import is configured before running sync.py
"""

import sys

from dotenv import load_dotenv

from config import ConfigError, SyncConfig
from field_mapper import Computed, Field, FieldList

# Load environment variables
load_dotenv()


def describe_mapping(mapping):
    """Render a mapping spec the way it would be written in GWS_USER_MAPPING."""
    parts = []
    for target in sorted(mapping):
        entry = mapping[target]
        if isinstance(entry, Field):
            source = entry.name
        elif isinstance(entry, FieldList):
            source = "[" + ", ".join(n if isinstance(n, str) else "<code>" for n in entry.names) + "]"
        elif isinstance(entry, Computed):
            source = "<code>"
        else:
            source = repr(entry)
        parts.append(f"{target} <- {source}")
    return "; ".join(parts)


def validate_config(config):
    """Validate that all required configuration is set"""
    missing = config.missing_settings()

    if missing:
        print("❌ Missing required configuration variables:")
        for var, description in missing.items():
            print(f"   - {var}: {description}")
        return False

    if not config.group_search_path:
        print("⚠️  Neither GWS_GROUP_STEM nor GWS_GROUP_SEARCH is set - no groups will be imported")

    print("✅ All required configuration variables are set")
    return True


def display_config(config):
    """Display current configuration"""
    print("\n📋 Current Configuration:")
    print(f"   GWS Host: {config.gws_host}")
    print(f"   PWS Host: {config.pws_host or '(not set)'}")
    print(f"   Client Certificate: {config.ws_cert_file or '(none)'}")
    print(f"   Group Search: {config.group_search_path or '(not set)'}")
    print(f"   Sync Groups: {', '.join(sorted(config.sync_groups)) if config.sync_groups else '(all)'}")
    print(f"   User Search: {config.user_search or '(not set)'}")
    print(f"   Imported Group: {config.imported_group_name}"
          f"{' (skipped)' if config.skip_autogenerated_group else ''}")
    print(f"   Update Users: {config.update_users}")
    print(f"   Update Only: {config.update_only}")
    print(f"   Create Privileged: {config.create_privileged}")
    print(f"   Import Group Members: {config.import_group_members}")
    print(f"   User Mapping: {describe_mapping(config.user_mapping)}")
    print(f"   Group Mapping: {describe_mapping(config.group_mapping)}")
    print(f"   RT Store File: {config.store_file}")
    print(f"   Dry Run Mode: {config.dry_run}")
    print()


if __name__ == "__main__":
    print("🔍 GWS to RT Import - Configuration Validator\n")

    try:
        config = SyncConfig.from_env()
    except ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)

    if validate_config(config):
        display_config(config)
        print("✅ Configuration is valid. You can now run:")
        print("   python sync.py            # dry run")
        print("   python sync.py --import   # write to RT")
    else:
        print("\n❌ Please update your .env file with the missing configuration")
        print("   See .env.example for reference")
        sys.exit(1)

"""
OS Family Detection

Maps the host operating system onto the families the fact runtime reports:
'windows', 'Debian' and 'RedHat'. Everything else is unrecognized (None).

Example:
    from ssm_agent.osfamily import detect_os_family

    family = detect_os_family()
"""

import os
import platform
from typing import Dict, Optional

from .config import get_os_family_override, debug_log
from .types import WINDOWS, DEBIAN, REDHAT, OS_FAMILIES


OS_RELEASE_PATH = '/etc/os-release'
REDHAT_RELEASE_PATH = '/etc/redhat-release'
DEBIAN_VERSION_PATH = '/etc/debian_version'

DEBIAN_IDS = {'debian', 'ubuntu'}
REDHAT_IDS = {'rhel', 'fedora', 'centos', 'rocky', 'almalinux', 'ol', 'amzn'}


def normalize_family(family: Optional[str]) -> Optional[str]:
    """Return the canonical spelling of a recognized family, else None"""
    if not family:
        return None
    for known in OS_FAMILIES:
        if family.lower() == known.lower():
            return known
    return None


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse os-release KEY=value lines, stripping quotes"""
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, _, value = line.partition('=')
        fields[key.strip()] = value.strip().strip('"').strip("'")
    return fields


def family_from_os_release(fields: Dict[str, str]) -> Optional[str]:
    """
    Derive the OS family from parsed os-release fields.

    ID is checked before ID_LIKE so a distribution's own identity wins
    over the one it claims to resemble.
    """
    ids = [fields.get('ID', '').lower()]
    ids.extend(fields.get('ID_LIKE', '').lower().split())

    for os_id in ids:
        if os_id in DEBIAN_IDS:
            return DEBIAN
        if os_id in REDHAT_IDS:
            return REDHAT
    return None


def _detect_linux_family() -> Optional[str]:
    try:
        with open(OS_RELEASE_PATH, 'r', encoding='utf-8', errors='replace') as f:
            family = family_from_os_release(parse_os_release(f.read()))
    except OSError as e:
        debug_log(f"Cannot read {OS_RELEASE_PATH}: {e}")
        family = None
    if family:
        return family

    # Older hosts without a usable os-release
    if os.path.exists(REDHAT_RELEASE_PATH):
        return REDHAT
    if os.path.exists(DEBIAN_VERSION_PATH):
        return DEBIAN
    return None


def detect_os_family() -> Optional[str]:
    """
    Detect the OS family of the local host.

    A configured SSM_AGENT_OS_FAMILY override wins over detection.

    Returns:
        'windows', 'Debian', 'RedHat', or None when unrecognized
    """
    override = get_os_family_override()
    if override:
        debug_log(f"Using configured OS family: {override}")
        return override

    system = platform.system()
    if system == 'Windows':
        family: Optional[str] = WINDOWS
    elif system == 'Linux':
        family = _detect_linux_family()
    else:
        family = None

    debug_log(f"Detected OS family: {family} (system={system})")
    return family

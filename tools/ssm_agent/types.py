"""
Type definitions for the SSM agent fact
Shapes follow the fact value handed to the host inventory runtime.
"""

from typing import TypedDict, Any, Callable, List, Optional, Sequence


# OS family names as reported by the fact runtime
WINDOWS = 'windows'
DEBIAN = 'Debian'
REDHAT = 'RedHat'

OS_FAMILIES = (WINDOWS, DEBIAN, REDHAT)


class DiagnosticsResult(TypedDict):
    """Value of the ssm_agent fact"""
    installed: bool
    diagnostics: List[Any]


class ServerProbeResult(TypedDict):
    """Per-server result of a remote probe"""
    server: str
    os_family: Optional[str]
    ssm_agent: Optional[DiagnosticsResult]
    error: Optional[str]
    duration_ms: int


# Collaborators injected into the probe
PathExists = Callable[[str], bool]
Execute = Callable[[str, Sequence[str]], Optional[str]]

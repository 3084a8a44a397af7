"""
SSM Agent Fact - AWS Systems Manager agent detection

This tool reports whether the SSM agent CLI (ssm-cli) is installed on a host
and, if so, the checks returned by `ssm-cli get-diagnostics`.

Example:
    from ssm_agent import ssm_agent, probe_servers

    # Fact value for the local host
    fact = ssm_agent()

    # Same fact for remote hosts over SSH
    result = probe_servers(["10.0.0.5"])
"""

from .types import *

from .config import get_config, set_config, reset_config

from .osfamily import detect_os_family

from .probe import (
    FACT_NAME,
    AgentDiagnosticsProbe,
    DiagnosticsParseError,
    MalformedDiagnosticsOutput,
    ssm_agent,
)

from .remote import probe_servers

__all__ = [
    # Configuration
    'get_config',
    'set_config',
    'reset_config',

    # Types
    'DiagnosticsResult',
    'ServerProbeResult',
    'WINDOWS',
    'DEBIAN',
    'REDHAT',

    # Probe
    'FACT_NAME',
    'AgentDiagnosticsProbe',
    'DiagnosticsParseError',
    'MalformedDiagnosticsOutput',
    'detect_os_family',
    'ssm_agent',
    'probe_servers',
]

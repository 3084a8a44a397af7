"""
SSM Agent Diagnostics Probe

Detects the AWS Systems Manager agent CLI (ssm-cli) and collects the output
of `ssm-cli get-diagnostics`.

Example:
    from ssm_agent import ssm_agent

    fact = ssm_agent()
    if fact['installed']:
        for check in fact['diagnostics']:
            print(check.get('Check'), check.get('Status'))
"""

import json
import os
import subprocess
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import get_command_timeout, debug_log
from .osfamily import detect_os_family, normalize_family
from .types import DiagnosticsResult, Execute, PathExists, WINDOWS, DEBIAN, REDHAT


FACT_NAME = 'ssm_agent'

DIAGNOSTICS_COMMAND = 'get-diagnostics'
DIAGNOSTICS_FIELD = 'DiagnosticsOutput'

# Checked in order, first existing path wins
CANDIDATE_PATHS: Dict[str, List[str]] = {
    WINDOWS: ['C:\\Program Files\\Amazon\\SSM\\ssm-cli.exe'],
    DEBIAN: ['/snap/bin/ssm-cli', '/usr/bin/ssm-cli'],
    REDHAT: ['/usr/bin/ssm-cli'],
}


class MalformedDiagnosticsOutput(Exception):
    """ssm-cli ran but its get-diagnostics output could not be used"""

    def __init__(self, path: str, reason: str, output: str):
        super().__init__(f"Malformed get-diagnostics output from {path}: {reason}")
        self.path = path
        self.reason = reason
        self.output = output


DiagnosticsParseError = MalformedDiagnosticsOutput


def default_result() -> DiagnosticsResult:
    return {'installed': False, 'diagnostics': []}


def command_line(os_family: Optional[str], path: str) -> str:
    """Render the get-diagnostics invocation as a shell would see it"""
    if normalize_family(os_family) == WINDOWS:
        return f'"{path}" {DIAGNOSTICS_COMMAND}'
    return f'{path} {DIAGNOSTICS_COMMAND}'


def run_command(path: str, args: Sequence[str]) -> Optional[str]:
    """
    Run an executable locally and return its stdout.

    Any failure (non-zero exit, missing binary, timeout, permission error)
    returns None.
    """
    timeout = get_command_timeout()
    try:
        completed = subprocess.run(
            [path, *args],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding='utf-8',
            errors='replace',
            timeout=timeout,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        debug_log(f"{path} exited with status {e.returncode}:", (e.stderr or '').strip())
        return None
    except subprocess.TimeoutExpired:
        debug_log(f"{path} timed out after {timeout}s")
        return None
    except OSError as e:
        debug_log(f"Failed to run {path}: {e}")
        return None

    return completed.stdout


def parse_diagnostics(path: str, output: str) -> List[Any]:
    """
    Extract DiagnosticsOutput from get-diagnostics output.

    Raises:
        MalformedDiagnosticsOutput: If the output is not a JSON object
            carrying DiagnosticsOutput
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise MalformedDiagnosticsOutput(path, f"invalid JSON ({e})", output)

    if not isinstance(data, dict):
        raise MalformedDiagnosticsOutput(
            path, f"expected a JSON object, got {type(data).__name__}", output)
    if DIAGNOSTICS_FIELD not in data:
        raise MalformedDiagnosticsOutput(path, f"missing {DIAGNOSTICS_FIELD}", output)
    if not isinstance(data[DIAGNOSTICS_FIELD], list):
        raise MalformedDiagnosticsOutput(
            path, f"{DIAGNOSTICS_FIELD} is not a list", output)

    return data[DIAGNOSTICS_FIELD]


class AgentDiagnosticsProbe:
    """
    Probe for the ssm_agent fact.

    Args:
        os_family: OS family of the probed host; detected on each run when omitted
        path_exists: Existence check for candidate executables
        execute: Runs an executable with arguments, returning stdout or None
        detect: OS family detection used when os_family is omitted
    """

    def __init__(
        self,
        os_family: Optional[str] = None,
        path_exists: Optional[PathExists] = None,
        execute: Optional[Execute] = None,
        detect: Optional[Callable[[], Optional[str]]] = None,
    ):
        self._os_family = os_family
        self.path_exists: PathExists = path_exists or os.path.exists
        self.execute: Execute = execute or run_command
        self.detect = detect or detect_os_family

    @property
    def os_family(self) -> Optional[str]:
        if self._os_family is None:
            return self.detect()
        return self._os_family

    def find_executable(self, os_family: Optional[str]) -> Optional[str]:
        """Return the first existing ssm-cli path for the family, if any"""
        for path in CANDIDATE_PATHS.get(normalize_family(os_family), []):
            if self.path_exists(path):
                return path
        return None

    def run(self) -> DiagnosticsResult:
        """
        Collect the fact value.

        Returns:
            {'installed': bool, 'diagnostics': list}

        Raises:
            MalformedDiagnosticsOutput: If ssm-cli produced unusable output
        """
        result = default_result()

        os_family = self.os_family
        if normalize_family(os_family) is None:
            debug_log(f"Unrecognized OS family: {os_family}")
            return result

        path = self.find_executable(os_family)
        if path is None:
            debug_log(f"ssm-cli not found for OS family {os_family}")
            return result

        result['installed'] = True

        debug_log(f"Running: {command_line(os_family, path)}")
        output = self.execute(path, [DIAGNOSTICS_COMMAND])
        if output is None:
            return result

        result['diagnostics'] = parse_diagnostics(path, output)
        return result


def ssm_agent() -> DiagnosticsResult:
    """
    Value of the ssm_agent fact for the local host.

    Returns:
        {'installed': bool, 'diagnostics': list}
    """
    return AgentDiagnosticsProbe().run()

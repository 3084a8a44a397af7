"""
Remote SSM Agent Probing

Runs the ssm_agent probe on remote hosts over SSH, in parallel, with
aggregated results.

Example:
    from ssm_agent import probe_servers

    result = json.loads(probe_servers())
    for server_result in result['results']:
        print(server_result['server'], server_result['ssm_agent'])
"""

import json
import os
import shlex
import stat
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Dict, Any, Sequence

import paramiko

from .config import (
    get_private_key,
    get_servers,
    get_username,
    get_port,
    get_command_timeout,
    get_connection_timeout,
    get_known_hosts_policy,
    debug_log,
)
from .osfamily import (
    OS_RELEASE_PATH,
    REDHAT_RELEASE_PATH,
    DEBIAN_VERSION_PATH,
    family_from_os_release,
    normalize_family,
    parse_os_release,
)
from .probe import AgentDiagnosticsProbe, MalformedDiagnosticsOutput
from .types import ServerProbeResult, WINDOWS, DEBIAN, REDHAT


class SSHKeyManager:
    """Context manager for secure temporary key file handling"""

    def __init__(self, key_content: str):
        self.key_content = key_content
        self.key_path: Optional[str] = None

    def __enter__(self) -> str:
        """Create temporary key file with secure permissions"""
        fd, self.key_path = tempfile.mkstemp(prefix='ssh_key_', suffix='.pem')
        try:
            os.write(fd, self.key_content.encode('utf-8'))
            if not self.key_content.endswith('\n'):
                os.write(fd, b'\n')
        finally:
            os.close(fd)

        os.chmod(self.key_path, stat.S_IRUSR | stat.S_IWUSR)
        debug_log(f"Created temporary key file: {self.key_path}")
        return self.key_path

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Overwrite and remove the temporary key file"""
        if self.key_path and os.path.exists(self.key_path):
            try:
                with open(self.key_path, 'wb') as f:
                    f.write(b'\x00' * os.path.getsize(self.key_path))
                os.remove(self.key_path)
                debug_log(f"Removed temporary key file: {self.key_path}")
            except OSError as e:
                debug_log(f"Warning: Failed to remove key file: {e}")
        return False


def _get_host_key_policy() -> paramiko.MissingHostKeyPolicy:
    """Get the appropriate host key policy based on configuration"""
    policy = get_known_hosts_policy()
    if policy == 'strict':
        return paramiko.RejectPolicy()
    elif policy == 'auto_add':
        return paramiko.AutoAddPolicy()
    else:
        return paramiko.WarningPolicy()


def _load_private_key(key_path: str) -> paramiko.PKey:
    """Load private key from file, trying different key types"""
    key_types = [
        paramiko.RSAKey,
        paramiko.Ed25519Key,
        paramiko.ECDSAKey,
    ]
    # DSSKey was removed in paramiko 4.x
    if hasattr(paramiko, 'DSSKey'):
        key_types.append(paramiko.DSSKey)

    last_error = None
    for key_class in key_types:
        try:
            return key_class.from_private_key_file(key_path)
        except Exception as e:
            last_error = e
            continue

    raise ValueError(f"Unable to load private key: {last_error}")


class RemoteHost:
    """
    Probe collaborators backed by a connected paramiko.SSHClient.

    Provides detect_os_family, path_exists and execute for
    AgentDiagnosticsProbe.
    """

    def __init__(self, client: paramiko.SSHClient, command_timeout: Optional[int] = None):
        self.client = client
        self.command_timeout = command_timeout
        self.os_family: Optional[str] = None

    def run(self, command: str):
        """Run a command, returning (exit_code, stdout)"""
        stdin, stdout, stderr = self.client.exec_command(command, timeout=self.command_timeout)
        stdin.close()
        exit_code = stdout.channel.recv_exit_status()
        stdout_text = stdout.read().decode('utf-8', errors='replace')
        return exit_code, stdout_text

    def detect_os_family(self) -> Optional[str]:
        """Detect the remote OS family, remembering it for later commands"""
        self.os_family = None

        exit_code, output = self.run(f'cat {OS_RELEASE_PATH}')
        if exit_code == 0 and output.strip():
            self.os_family = family_from_os_release(parse_os_release(output))

        # Older hosts without a usable os-release
        if self.os_family is None:
            for release_path, family in ((REDHAT_RELEASE_PATH, REDHAT), (DEBIAN_VERSION_PATH, DEBIAN)):
                if self.run(f'test -e {release_path}')[0] == 0:
                    self.os_family = family
                    break

        if self.os_family is None and exit_code != 0:
            exit_code, output = self.run('cmd /c ver')
            if exit_code == 0 and 'windows' in output.lower():
                self.os_family = WINDOWS

        debug_log(f"Remote OS family: {self.os_family}")
        return self.os_family

    def path_exists(self, path: str) -> bool:
        if self.os_family == WINDOWS:
            exit_code, output = self.run(f'cmd /c if exist "{path}" echo found')
            return exit_code == 0 and 'found' in output
        exit_code, _ = self.run(f'test -e {shlex.quote(path)}')
        return exit_code == 0

    def execute(self, path: str, args: Sequence[str]) -> Optional[str]:
        if self.os_family == WINDOWS:
            command = ' '.join([f'"{path}"', *args])
        else:
            command = ' '.join(shlex.quote(part) for part in [path, *args])

        try:
            exit_code, output = self.run(command)
        except (paramiko.SSHException, OSError) as e:
            debug_log(f"Failed to run {path}: {e}")
            return None

        if exit_code != 0:
            debug_log(f"{path} exited with status {exit_code}")
            return None
        return output


def probe_host(host: RemoteHost) -> ServerProbeResult:
    """Run the ssm_agent probe through a connected RemoteHost; the caller fills in server"""
    start_time = time.time()
    probe = AgentDiagnosticsProbe(
        path_exists=host.path_exists,
        execute=host.execute,
        detect=host.detect_os_family,
    )

    result: ServerProbeResult = {
        'server': '',
        'os_family': None,
        'ssm_agent': None,
        'error': None,
        'duration_ms': 0,
    }
    try:
        result['ssm_agent'] = probe.run()
    except MalformedDiagnosticsOutput as e:
        result['error'] = str(e)

    result['os_family'] = normalize_family(host.os_family)
    result['duration_ms'] = int((time.time() - start_time) * 1000)
    return result


def _failed_result(server: str, error: str, start_time: float) -> ServerProbeResult:
    return {
        'server': server,
        'os_family': None,
        'ssm_agent': None,
        'error': error,
        'duration_ms': int((time.time() - start_time) * 1000),
    }


def _probe_single_server(
    server: str,
    key_path: str,
    username: str,
    port: int,
    connection_timeout: int,
) -> ServerProbeResult:
    """Connect to a single server and probe it"""
    start_time = time.time()
    client = paramiko.SSHClient()

    try:
        client.set_missing_host_key_policy(_get_host_key_policy())
        private_key = _load_private_key(key_path)

        debug_log(f"Connecting to {server}:{port} as {username}")

        client.connect(
            hostname=server,
            port=port,
            username=username,
            pkey=private_key,
            timeout=connection_timeout,
            allow_agent=False,
            look_for_keys=False,
        )

        result = probe_host(RemoteHost(client, get_command_timeout()))
        result['server'] = server
        result['duration_ms'] = int((time.time() - start_time) * 1000)

        debug_log(f"Probe completed on {server}: {result['ssm_agent']}")
        return result

    except paramiko.AuthenticationException as e:
        return _failed_result(server, f"Authentication failed: {str(e)}", start_time)
    except paramiko.SSHException as e:
        return _failed_result(server, f"SSH error: {str(e)}", start_time)
    except TimeoutError as e:
        return _failed_result(server, f"Connection timeout: {str(e)}", start_time)
    except Exception as e:
        return _failed_result(server, f"Error: {str(e)}", start_time)
    finally:
        client.close()


def _empty_response(error: str) -> str:
    return json.dumps({
        'results': [],
        'summary': {'total': 0, 'installed': 0, 'not_installed': 0, 'failed': 0},
        'error': error,
    })


def probe_servers(servers: Optional[List[str]] = None) -> str:
    """
    Probe configured servers for the SSM agent in parallel.

    Args:
        servers: Optional subset of configured servers (defaults to all)

    Returns:
        JSON string with per-server results and summary

    Example:
        data = json.loads(probe_servers())
        print(data['summary']['installed'])
    """
    configured = get_servers()
    if servers is None:
        servers = configured
        if not servers:
            return _empty_response('No servers configured')
    else:
        if not servers:
            return _empty_response('No servers specified')
        configured_servers = set(configured)
        invalid_servers = [s for s in servers if s not in configured_servers]
        if invalid_servers:
            return _empty_response(
                f"Invalid servers (not configured): {', '.join(invalid_servers)}")

    private_key = get_private_key()
    if not private_key:
        return _empty_response('SSH private key not configured')

    username = get_username()
    if not username:
        return _empty_response('SSH username not configured')

    port = get_port()
    connection_timeout = get_connection_timeout()

    results: List[Dict[str, Any]] = []

    with SSHKeyManager(private_key) as key_path:
        max_workers = min(len(servers), 10)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(
                    _probe_single_server,
                    server,
                    key_path,
                    username,
                    port,
                    connection_timeout,
                ): server
                for server in servers
            }

            for future in as_completed(futures):
                results.append(future.result())

    results.sort(key=lambda r: r['server'])

    return json.dumps({
        'results': results,
        'summary': summarize(results),
    })


def summarize(results: List[Dict[str, Any]]) -> Dict[str, int]:
    failed = sum(1 for r in results if r['error'])
    installed = sum(
        1 for r in results
        if not r['error'] and r['ssm_agent'] and r['ssm_agent']['installed']
    )
    return {
        'total': len(results),
        'installed': installed,
        'not_installed': len(results) - installed - failed,
        'failed': failed,
    }

"""
SSM Agent Fact Configuration

Configuration is loaded from environment variables, typically set via a
.env.ssm-agent file next to the collection run or the tool's own config.env.

Environment Variables:
    SSM_AGENT_OS_FAMILY: Override the detected OS family (windows/Debian/RedHat)
    SSM_AGENT_COMMAND_TIMEOUT: get-diagnostics timeout in seconds (default: 0, no timeout)
    SSM_AGENT_DEBUG: Enable debug logging (default: false)
    SSM_AGENT_SERVERS: Comma-separated list of remote hosts to probe over SSH
    SSH_PRIVATE_KEY: SSH private key content (PEM format)
    SSH_USERNAME: SSH username
    SSH_PORT: SSH port (default: 22)
    SSH_CONNECTION_TIMEOUT: Connection timeout in seconds (default: 10)
    SSH_KNOWN_HOSTS_POLICY: Host key policy (strict/auto_add/ignore, default: auto_add)
"""

import base64
import binascii
import os
from typing import Optional, Dict, Any, List
from pathlib import Path


def _decode_env_value(value: str) -> str:
    """
    Decode environment variable value.
    Values prefixed with 'base64:' are base64-decoded to support multi-line secrets.
    """
    if value.startswith('base64:'):
        try:
            return base64.b64decode(value[7:]).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError):
            return value
    return value


def _load_env_file(file_path: Path) -> None:
    """Load environment variables from a .env file."""
    if not file_path.exists():
        return

    with file_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key.strip(), _decode_env_value(value.strip()))


def _load_config_env():
    """
    Load environment variables from config files.

    Search order (first found wins for each variable):
    1. Current working directory .env.ssm-agent
    2. Tool's own config.env (tool directory)
    """
    _load_env_file(Path.cwd() / ".env.ssm-agent")
    _load_env_file(Path(__file__).parent / "config.env")


# Auto-load config.env when module is imported
_load_config_env()


class SSMAgentConfig:
    """SSM agent fact configuration"""

    def __init__(self):
        self.os_family: Optional[str] = os.getenv('SSM_AGENT_OS_FAMILY') or None
        self.command_timeout: int = int(os.getenv('SSM_AGENT_COMMAND_TIMEOUT', '0'))
        self.debug: bool = os.getenv('SSM_AGENT_DEBUG', '').lower() == 'true'
        self.servers: List[str] = self._parse_servers(os.getenv('SSM_AGENT_SERVERS', ''))
        self.private_key: str = os.getenv('SSH_PRIVATE_KEY', '')
        self.username: str = os.getenv('SSH_USERNAME', '')
        self.port: int = int(os.getenv('SSH_PORT', '22'))
        self.connection_timeout: int = int(os.getenv('SSH_CONNECTION_TIMEOUT', '10'))
        self.known_hosts_policy: str = os.getenv('SSH_KNOWN_HOSTS_POLICY', 'auto_add')

    @staticmethod
    def _parse_servers(servers_str: str) -> List[str]:
        """Parse comma-separated server list"""
        if not servers_str:
            return []
        return [s.strip() for s in servers_str.split(',') if s.strip()]


# Global configuration instance
_config = SSMAgentConfig()


def get_config() -> Dict[str, Any]:
    """Get current configuration (excluding sensitive data)"""
    return {
        'os_family': _config.os_family,
        'command_timeout': _config.command_timeout,
        'debug': _config.debug,
        'servers': _config.servers,
        'username': _config.username,
        'port': _config.port,
        'connection_timeout': _config.connection_timeout,
        'known_hosts_policy': _config.known_hosts_policy,
        'has_private_key': bool(_config.private_key),
    }


def set_config(new_config: Dict[str, Any]) -> None:
    """Set configuration (merges with existing config)"""
    # Keys are accepted with or without the ssm_agent_ prefix
    def has_val(key: str) -> bool:
        return f'ssm_agent_{key}' in new_config or key in new_config

    def get_val(key: str) -> Any:
        if f'ssm_agent_{key}' in new_config:
            return new_config[f'ssm_agent_{key}']
        return new_config.get(key)

    if get_val('os_family'):
        _config.os_family = get_val('os_family')
    if has_val('command_timeout') and get_val('command_timeout') is not None:
        _config.command_timeout = int(get_val('command_timeout'))
    if get_val('servers'):
        val = get_val('servers')
        if isinstance(val, list):
            _config.servers = val
        elif isinstance(val, str):
            _config.servers = SSMAgentConfig._parse_servers(val)
    if get_val('private_key'):
        _config.private_key = get_val('private_key')
    if get_val('username'):
        _config.username = get_val('username')
    if get_val('port'):
        _config.port = int(get_val('port'))
    if get_val('connection_timeout'):
        _config.connection_timeout = int(get_val('connection_timeout'))
    if get_val('known_hosts_policy'):
        _config.known_hosts_policy = get_val('known_hosts_policy')
    if has_val('debug'):
        _config.debug = get_val('debug')


def reset_config() -> None:
    """Reset configuration to defaults (from environment variables)"""
    global _config
    _config = SSMAgentConfig()


def get_os_family_override() -> Optional[str]:
    return _config.os_family


def get_command_timeout() -> Optional[int]:
    """Get get-diagnostics timeout in seconds, None when unlimited"""
    return _config.command_timeout or None


def get_servers() -> List[str]:
    """Get list of configured remote servers"""
    return _config.servers


def get_private_key() -> str:
    return _config.private_key


def get_username() -> str:
    return _config.username


def get_port() -> int:
    return _config.port


def get_connection_timeout() -> int:
    """Get SSH connection timeout in seconds"""
    return _config.connection_timeout


def get_known_hosts_policy() -> str:
    return _config.known_hosts_policy


def debug_log(message: str, *args: Any) -> None:
    """Debug log helper"""
    if _config.debug:
        if args:
            print(f'[SSM Agent] {message}', *args)
        else:
            print(f'[SSM Agent] {message}')

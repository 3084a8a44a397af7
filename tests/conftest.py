import json

import pytest

from ssm_agent import config


SUCCESS_OUTPUT = json.dumps({
    'DiagnosticsOutput': [
        {'Check': 'EC2 IMDS', 'Status': 'Success', 'Note': 'IMDS is accessible'},
        {'Check': 'Hybrid instance registration', 'Status': 'Skipped'},
    ]
})


class FakeFilesystem(object):
    """Existence predicate over a fixed set of paths, recording each check"""

    def __init__(self, paths=()):
        self.paths = set(paths)
        self.checked = []

    def __call__(self, path):
        self.checked.append(path)
        return path in self.paths


class FakeExecutor(object):
    """Returns canned stdout (None for a failed run), recording each call"""

    def __init__(self, output=None):
        self.output = output
        self.calls = []

    def __call__(self, path, args):
        self.calls.append((path, list(args)))
        return self.output


class FakeChannel(object):
    def __init__(self, exit_code):
        self.exit_code = exit_code

    def recv_exit_status(self):
        return self.exit_code


class FakeStream(object):
    def __init__(self, data=b'', exit_code=0):
        self.data = data
        self.channel = FakeChannel(exit_code)
        self.closed = False

    def read(self):
        return self.data

    def close(self):
        self.closed = True


class FakeSSHClient(object):
    """
    Stands in for a connected paramiko.SSHClient.

    responses maps a command to (exit_code, stdout); unknown commands exit 1.
    """

    def __init__(self, responses):
        self.responses = responses
        self.commands = []

    def exec_command(self, command, timeout=None):
        self.commands.append(command)
        exit_code, output = self.responses.get(command, (1, ''))
        stdout = FakeStream(output.encode('utf-8'), exit_code)
        return FakeStream(), stdout, FakeStream()


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    for name in ('SSM_AGENT_OS_FAMILY', 'SSM_AGENT_COMMAND_TIMEOUT', 'SSM_AGENT_DEBUG',
                 'SSM_AGENT_SERVERS', 'SSH_PRIVATE_KEY', 'SSH_USERNAME', 'SSH_PORT',
                 'SSH_CONNECTION_TIMEOUT', 'SSH_KNOWN_HOSTS_POLICY'):
        monkeypatch.delenv(name, raising=False)
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def filesystem():
    return FakeFilesystem


@pytest.fixture
def executor():
    return FakeExecutor

import os
import subprocess

import pytest

import conftest

from ssm_agent import probe
from ssm_agent import set_config
from ssm_agent.probe import (
    AgentDiagnosticsProbe,
    DiagnosticsParseError,
    MalformedDiagnosticsOutput,
    command_line,
    run_command,
    ssm_agent,
)

WINDOWS_PATH = 'C:\\Program Files\\Amazon\\SSM\\ssm-cli.exe'
SNAP_PATH = '/snap/bin/ssm-cli'
USR_PATH = '/usr/bin/ssm-cli'


@pytest.mark.parametrize("os_family", ['Solaris', 'Darwin', 'Suse', 'FreeBSD'])
def test_unrecognized_family_touches_nothing(filesystem, executor, os_family):
    fs = filesystem([WINDOWS_PATH, SNAP_PATH, USR_PATH])
    run = executor(conftest.SUCCESS_OUTPUT)

    result = AgentDiagnosticsProbe(os_family, fs, run).run()

    assert result == {'installed': False, 'diagnostics': []}
    assert fs.checked == []
    assert run.calls == []


def test_undetected_family_touches_nothing(filesystem, executor):
    fs = filesystem([USR_PATH])
    run = executor(conftest.SUCCESS_OUTPUT)

    result = AgentDiagnosticsProbe(path_exists=fs, execute=run, detect=lambda: None).run()

    assert result == {'installed': False, 'diagnostics': []}
    assert fs.checked == []
    assert run.calls == []


@pytest.mark.parametrize("os_family,expected_checks", [
    ('windows', [WINDOWS_PATH]),
    ('Debian', [SNAP_PATH, USR_PATH]),
    ('RedHat', [USR_PATH]),
])
def test_agent_absent(filesystem, executor, os_family, expected_checks):
    fs = filesystem()
    run = executor(conftest.SUCCESS_OUTPUT)

    result = AgentDiagnosticsProbe(os_family, fs, run).run()

    assert result == {'installed': False, 'diagnostics': []}
    assert fs.checked == expected_checks
    assert run.calls == []


@pytest.mark.parametrize("os_family,path", [
    ('windows', WINDOWS_PATH),
    ('Debian', USR_PATH),
    ('RedHat', USR_PATH),
])
def test_invocation_failure_keeps_installed(filesystem, executor, os_family, path):
    run = executor(None)

    result = AgentDiagnosticsProbe(os_family, filesystem([path]), run).run()

    assert result == {'installed': True, 'diagnostics': []}
    assert run.calls == [(path, ['get-diagnostics'])]


@pytest.mark.parametrize("os_family,path", [
    ('windows', WINDOWS_PATH),
    ('Debian', SNAP_PATH),
    ('RedHat', USR_PATH),
])
def test_diagnostics_collected(filesystem, executor, os_family, path):
    run = executor('{"DiagnosticsOutput": [ {"Status":"Success"} ]}')

    result = AgentDiagnosticsProbe(os_family, filesystem([path]), run).run()

    assert result == {'installed': True, 'diagnostics': [{'Status': 'Success'}]}
    assert run.calls == [(path, ['get-diagnostics'])]


def test_diagnostics_passed_through_verbatim(filesystem, executor):
    run = executor(conftest.SUCCESS_OUTPUT)

    result = AgentDiagnosticsProbe('RedHat', filesystem([USR_PATH]), run).run()

    assert result['diagnostics'][0]['Note'] == 'IMDS is accessible'
    assert result['diagnostics'][1] == {'Check': 'Hybrid instance registration', 'Status': 'Skipped'}


@pytest.mark.parametrize("output", ['not json', '', '{"DiagnosticsOutput": ', '[1, 2]', '{"Other": []}',
    '{"DiagnosticsOutput": null}', '{"DiagnosticsOutput": {"Status": "Success"}}'])
def test_malformed_output_raises(filesystem, executor, output):
    diagnostics_probe = AgentDiagnosticsProbe('Debian', filesystem([USR_PATH]), executor(output))

    with pytest.raises(MalformedDiagnosticsOutput) as excinfo:
        diagnostics_probe.run()

    assert excinfo.value.path == USR_PATH
    assert excinfo.value.output == output


def test_parse_error_alias():
    assert DiagnosticsParseError is MalformedDiagnosticsOutput


def test_debian_prefers_snap(filesystem, executor):
    fs = filesystem([SNAP_PATH, USR_PATH])
    run = executor(None)

    AgentDiagnosticsProbe('Debian', fs, run).run()

    assert fs.checked == [SNAP_PATH]
    assert run.calls == [(SNAP_PATH, ['get-diagnostics'])]


def test_family_matching_ignores_case(filesystem, executor):
    run = executor(None)

    result = AgentDiagnosticsProbe('WINDOWS', filesystem([WINDOWS_PATH]), run).run()

    assert result['installed'] is True


def test_repeated_runs_are_equal(filesystem, executor):
    diagnostics_probe = AgentDiagnosticsProbe(
        'Debian', filesystem([USR_PATH]), executor(conftest.SUCCESS_OUTPUT))

    first = diagnostics_probe.run()
    second = diagnostics_probe.run()

    assert first == second
    assert first is not second


def test_family_detected_on_each_run(filesystem, executor):
    families = iter(['RedHat', 'Darwin'])
    diagnostics_probe = AgentDiagnosticsProbe(
        path_exists=filesystem([USR_PATH]), execute=executor(None), detect=lambda: next(families))

    assert diagnostics_probe.run()['installed'] is True
    assert diagnostics_probe.run()['installed'] is False


def test_command_line():
    assert command_line('windows', WINDOWS_PATH) == '"C:\\Program Files\\Amazon\\SSM\\ssm-cli.exe" get-diagnostics'
    assert command_line('Debian', SNAP_PATH) == '/snap/bin/ssm-cli get-diagnostics'


def test_run_command_returns_stdout(monkeypatch):
    seen = {}

    def fake_run(argv, **kwargs):
        seen['argv'] = argv
        seen.update(kwargs)
        return subprocess.CompletedProcess(argv, 0, stdout='{"DiagnosticsOutput": []}', stderr='')

    monkeypatch.setattr(subprocess, 'run', fake_run)

    assert run_command(USR_PATH, ['get-diagnostics']) == '{"DiagnosticsOutput": []}'
    assert seen['argv'] == [USR_PATH, 'get-diagnostics']
    assert seen['check'] is True
    assert seen['timeout'] is None


def test_run_command_uses_configured_timeout(monkeypatch):
    seen = {}

    def fake_run(argv, **kwargs):
        seen.update(kwargs)
        return subprocess.CompletedProcess(argv, 0, stdout='', stderr='')

    monkeypatch.setattr(subprocess, 'run', fake_run)
    set_config({'command_timeout': 15})

    run_command(USR_PATH, ['get-diagnostics'])

    assert seen['timeout'] == 15


@pytest.mark.parametrize("error", [
    subprocess.CalledProcessError(1, [USR_PATH], output='', stderr='agent not running'),
    subprocess.TimeoutExpired([USR_PATH], 5),
    FileNotFoundError(2, 'No such file or directory'),
    PermissionError(13, 'Permission denied'),
])
def test_run_command_failure_returns_none(monkeypatch, error):
    def fake_run(argv, **kwargs):
        raise error

    monkeypatch.setattr(subprocess, 'run', fake_run)

    assert run_command(USR_PATH, ['get-diagnostics']) is None


def test_fact_uses_local_collaborators(monkeypatch):
    monkeypatch.setattr(os.path, 'exists', lambda path: path == USR_PATH)
    monkeypatch.setattr(probe, 'run_command', lambda path, args: '{"DiagnosticsOutput": ["ok"]}')
    set_config({'os_family': 'RedHat'})

    assert ssm_agent() == {'installed': True, 'diagnostics': ['ok']}

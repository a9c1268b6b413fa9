"""
Tests for the picnexus command line front end.

build_orchestrator is patched to return the fake-backed orchestrator
fixture, so commands run end to end without network or keyring.
"""

from unittest.mock import patch

import pytest

from picnexus import cli
from picnexus.core.errors import StoreError


@pytest.fixture
def run(orchestrator):
    """Invoke cli.main against the orchestrator fixture."""
    def invoke(*argv):
        with patch.object(cli, 'build_orchestrator', return_value=orchestrator), \
                patch.object(cli, 'install_exception_hook'):
            return cli.main(list(argv))
    return invoke


@pytest.fixture
def saved_config(orchestrator, config):
    orchestrator.save_config(config)
    return config


# ============================================================================
# Argument Parsing
# ============================================================================

class TestParser:
    """Test suite for build_parser."""

    def test_upload_arguments(self):
        args = cli.build_parser().parse_args(
            ['upload', 'a.png', 'b.png', '--services', 'alpha,beta', '--max-concurrent', '2'])
        assert args.command == 'upload'
        assert args.files == ['a.png', 'b.png']
        assert args.services == 'alpha,beta'
        assert args.max_concurrent == 2
        assert args.single is False

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_retry_all(self):
        args = cli.build_parser().parse_args(['retry', '--all'])
        assert args.all is True
        assert args.id is None

    def test_log_show_tail(self):
        args = cli.build_parser().parse_args(['log', 'show', '--tail', '100'])
        assert args.log_command == 'show'
        assert args.tail == 100

    def test_short_v_prints_version(self, capsys):
        """-v is the version flag; console verbosity is --debug."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(['-v'])
        assert capsys.readouterr().out.startswith("picnexus ")

    def test_debug_flag(self):
        assert cli.build_parser().parse_args(['--debug', 'retry']).debug is True


# ============================================================================
# Commands
# ============================================================================

class TestCommands:
    """Test suite for command dispatch."""

    def test_upload_queue(self, run, saved_config, make_images, capsys):
        paths = make_images(2)

        assert run('upload', *paths) == 0

        out = capsys.readouterr().out
        assert "image_0.png: https://img.example/alpha/image_0.png" in out
        assert "image_1.png: https://img.example/alpha/image_1.png" in out

    def test_upload_with_service_override(self, run, saved_config, image_file, capsys):
        assert run('upload', image_file, '--services', 'beta') == 0
        assert "https://img.example/beta/photo.png" in capsys.readouterr().out

    def test_upload_failure_exit_code(self, run, saved_config, temp_dir):
        assert run('upload', f"{temp_dir}/missing.png", '--single') == 1

    def test_upload_single(self, run, saved_config, image_file, capsys):
        assert run('upload', image_file, '--single') == 0
        assert "https://img.example/alpha/photo.png" in capsys.readouterr().out.splitlines()

    def test_history(self, run, saved_config, orchestrator, image_file, capsys):
        orchestrator.handle_file_upload(image_file, saved_config)
        capsys.readouterr()

        assert run('history', '--limit', '5') == 0

        out = capsys.readouterr().out
        assert "photo.png" in out
        assert "alpha=success" in out

    def test_retry_list_empty(self, run, orchestrator):
        assert run('retry') == 0
        assert orchestrator.retry_queue.count() == 0

    def test_retry_unknown_id(self, run):
        assert run('retry', 'missing') == 1

    def test_sync_not_configured(self, run):
        assert run('sync') == 1

    def test_config_set_masks_secret(self, run, orchestrator, capsys):
        assert run('config', 'set', 'weibo', 'cookie', 'SUB=secretvalue123') == 0

        assert orchestrator.load_config().service_options('weibo')['cookie'] == 'SUB=secretvalue123'
        out = capsys.readouterr().out
        assert "secretvalue" not in out
        assert "******" in out

    def test_config_enable(self, run, orchestrator):
        assert run('config', 'enable', 'beta', 'alpha') == 0
        assert orchestrator.load_config().enabled_services == ['beta', 'alpha']

    def test_config_enable_unknown_service(self, run, orchestrator):
        assert run('config', 'enable', 'alpha', 'nope') == 1
        assert orchestrator.load_config().enabled_services == []

    def test_picnexus_error_exit_code(self):
        with patch.object(cli, 'build_orchestrator', side_effect=StoreError("locked", "init")), \
                patch.object(cli, 'install_exception_hook'):
            assert cli.main(['history']) == 1

    def test_log_path(self, run, capsys):
        assert run('log', 'path') == 0
        assert capsys.readouterr().out.strip().endswith("picnexus.log")

    def test_log_set_and_settings(self, run, capsys):
        assert run('log', 'set', 'backup_count', '5') == 0
        capsys.readouterr()

        assert run('log', 'settings') == 0
        assert '"backup_count": 5' in capsys.readouterr().out

    def test_log_set_unknown_key(self, run):
        assert run('log', 'set', 'colour', 'blue') == 1

    def test_quiet_flag(self, run):
        with patch.object(cli, 'set_quiet') as set_quiet:
            assert run('--quiet', 'retry') == 0
        set_quiet.assert_called_once_with(True)

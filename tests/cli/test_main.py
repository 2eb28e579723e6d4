import pytest
from click.testing import CliRunner
from unittest import mock

from manga_archiver.cli.main import archiver

# Handlers are patched where main.py looks them up
HANDLER_PATH = "manga_archiver.cli.main.{}"


@pytest.fixture
def runner():
    return CliRunner()


def test_init_passes_global_options(runner):
    with mock.patch(HANDLER_PATH.format("init_handler")) as mock_handler:
        result = runner.invoke(archiver, ['--config', '/tmp/custom.ini', '-v', 'init'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(config_path='/tmp/custom.ini', verbose=True)


def test_scan_cli_passes_params_to_handler(runner):
    with mock.patch(HANDLER_PATH.format("scan_handler")) as mock_handler:
        result = runner.invoke(archiver, ['scan', 'solo', '--new', '-d'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(
            config_path=None, verbose=False, title_query='solo', new_only=True, download=True,
        )


def test_scan_cli_defaults(runner):
    with mock.patch(HANDLER_PATH.format("scan_handler")) as mock_handler:
        result = runner.invoke(archiver, ['scan'])

        assert result.exit_code == 0
        called_kwargs = mock_handler.call_args[1]
        assert called_kwargs['title_query'] is None
        assert called_kwargs['new_only'] is False
        assert called_kwargs['download'] is False


def test_download_cli_requires_site_and_url(runner):
    with mock.patch(HANDLER_PATH.format("download_handler")) as mock_handler:
        result = runner.invoke(archiver, ['download', 'eros'])
        assert result.exit_code != 0
        mock_handler.assert_not_called()

        url = "https://eros-moon.xyz/solo-leveling-chapter-1/"
        result = runner.invoke(archiver, ['download', 'eros', url])
        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(config_path=None, verbose=False, site='eros', chapter_url=url)


def test_monitor_cli_options(runner):
    with mock.patch(HANDLER_PATH.format("monitor_handler")) as mock_handler:
        result = runner.invoke(archiver, ['monitor', '--loop', '--interval', '15'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(config_path=None, verbose=False, loop=True, interval=15)


def test_monitor_cli_rejects_zero_interval(runner):
    with mock.patch(HANDLER_PATH.format("monitor_handler")) as mock_handler:
        result = runner.invoke(archiver, ['monitor', '--interval', '0'])

        assert result.exit_code != 0
        mock_handler.assert_not_called()


def test_check_cli_passes_params_to_handler(runner):
    with mock.patch(HANDLER_PATH.format("check_handler")) as mock_handler:
        result = runner.invoke(archiver, ['check', 'all', '--download', '--cfg'])

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(
            config_path=None, verbose=False, site='all', download=True, add_to_config=True,
        )


def test_status_cli(runner):
    with mock.patch(HANDLER_PATH.format("status_handler")) as mock_handler:
        result = runner.invoke(archiver, ['status'])
        assert result.exit_code == 0
        mock_handler.assert_called_once_with(config_path=None, verbose=False)


@pytest.mark.parametrize("args, expected_days", [
    (['cleanup'], 30),
    (['cleanup', '7'], 7),
])
def test_cleanup_cli_days(runner, args, expected_days):
    with mock.patch(HANDLER_PATH.format("cleanup_handler")) as mock_handler:
        result = runner.invoke(archiver, args)

        assert result.exit_code == 0, f"CLI command failed: {result.output}"
        mock_handler.assert_called_once_with(config_path=None, verbose=False, days=expected_days)


def test_cleanup_cli_rejects_negative_days(runner):
    with mock.patch(HANDLER_PATH.format("cleanup_handler")) as mock_handler:
        result = runner.invoke(archiver, ['cleanup', '--', '-1'])
        assert result.exit_code != 0
        mock_handler.assert_not_called()

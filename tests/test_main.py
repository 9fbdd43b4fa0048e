"""
Tests for the command-line entry point and logging setup.
"""

import logging

import pytest
import structlog

from profile_tiles import main as cli
from profile_tiles.logging_config import configure_logging


@pytest.fixture()
def quiet_logging(monkeypatch):
    """Keep main() from reconfiguring structlog for the rest of the session."""
    monkeypatch.setattr(cli, "configure_logging", lambda settings: None)


class TestArguments:

    def test_year_month_parsed(self):
        args = cli.build_parser().parse_args(["--start", "1999-11", "--end", "2000-02"])
        assert args.start == (1999, 11)
        assert args.end == (2000, 2)

    @pytest.mark.parametrize("value", ["1999", "1999-13", "abc-01"])
    def test_bad_year_month(self, value):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--start", value])


class TestMain:

    def test_run_succeeds(self, quiet_logging, tmp_path):
        source = tmp_path / "archives"
        source.mkdir()
        output = tmp_path / "tiles"

        code = cli.main([
            "--start", "2001-03",
            "--end", "2001-03",
            "--source", str(source),
            "--output", str(output),
        ])

        assert code == 0

    def test_invalid_window(self, quiet_logging, capsys):
        code = cli.main(["--start", "2001-05", "--end", "2001-03"])
        assert code == 2
        assert "invalid settings" in capsys.readouterr().err

    def test_output_failure_returns_error(self, quiet_logging, tmp_path, monkeypatch):
        def _fail(settings):
            raise PermissionError("read-only output")

        monkeypatch.setattr(cli, "run", _fail)
        code = cli.main(["--output", str(tmp_path)])
        assert code == 1


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _restore(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)
        structlog.reset_defaults()

    def test_handler_installed(self, settings):
        configure_logging(settings.model_copy(update={"LOG_LEVEL": "debug", "LOG_JSON": True}))
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert root.level == logging.DEBUG

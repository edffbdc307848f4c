"""Tests for the command line entry point."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from queue_dump.__main__ import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    build_parser,
    main,
)
from queue_dump.common.exceptions import SecurityViolationError
from queue_dump.consumer import DrainSummary
from queue_dump.logging import clear_log_context


@pytest.fixture(autouse=True)
def restore_root_logger():
    root_logger = logging.getLogger()
    saved = list(root_logger.handlers)
    yield
    for handler in root_logger.handlers:
        if handler not in saved:
            handler.close()
    root_logger.handlers[:] = saved
    clear_log_context()


def fake_drainer(drain_result=None, drain_error=None):
    """Patchable QueueDrainer class whose drain() returns or raises."""
    drainer = MagicMock()
    drainer.__aenter__ = AsyncMock(return_value=drainer)
    drainer.__aexit__ = AsyncMock(return_value=None)
    drainer.drain = AsyncMock(return_value=drain_result, side_effect=drain_error)
    return MagicMock(return_value=drainer), drainer


def cli_args(tmp_path, *extra):
    return [
        "localhost:9092",
        "files",
        str(tmp_path / "out"),
        "--log-dir",
        str(tmp_path / "logs"),
        *extra,
    ]


class TestMain:
    def test_no_arguments_prints_usage(self, capsys):
        assert main([]) == EXIT_OK

        out = capsys.readouterr().out
        assert "The act of dumping WILL remove the messages from the queue" in out

    def test_help_flag_prints_usage_without_side_effects(self, capsys):
        drainer_cls, _ = fake_drainer()

        with patch("queue_dump.__main__.QueueDrainer", drainer_cls):
            with pytest.raises(SystemExit) as exc_info:
                main(["--help"])

        assert exc_info.value.code == 0
        assert "The act of dumping WILL remove the messages from the queue" in (
            capsys.readouterr().out
        )
        drainer_cls.assert_not_called()

    def test_successful_drain(self, tmp_path):
        drainer_cls, drainer = fake_drainer(DrainSummary(files_written=2, bytes_written=8))

        with patch("queue_dump.__main__.QueueDrainer", drainer_cls):
            code = main(cli_args(tmp_path, "--group-id", "archive"))

        assert code == EXIT_OK
        assert (tmp_path / "out").is_dir()
        config = drainer_cls.call_args.args[0]
        assert config.group_id == "archive"
        assert config.queue == "files"
        drainer.__aexit__.assert_awaited_once()

    def test_security_violation_fails(self, tmp_path):
        drainer_cls, drainer = fake_drainer(
            drain_error=SecurityViolationError("escaped", sandbox="/out/A")
        )

        with patch("queue_dump.__main__.QueueDrainer", drainer_cls):
            code = main(cli_args(tmp_path))

        assert code == EXIT_FAILURE
        drainer.__aexit__.assert_awaited_once()

    def test_interrupt_returns_130(self, tmp_path):
        drainer_cls, _ = fake_drainer(drain_error=KeyboardInterrupt())

        with patch("queue_dump.__main__.QueueDrainer", drainer_cls):
            code = main(cli_args(tmp_path))

        assert code == EXIT_INTERRUPTED

    def test_bad_broker_uri_fails(self, tmp_path):
        drainer_cls, _ = fake_drainer()

        with patch("queue_dump.__main__.QueueDrainer", drainer_cls):
            code = main(
                [
                    "amqp://broker:5672",
                    "files",
                    str(tmp_path / "out"),
                    "--log-dir",
                    str(tmp_path / "logs"),
                ]
            )

        assert code == EXIT_FAILURE
        drainer_cls.assert_not_called()

    def test_missing_arguments_exit_with_usage_error(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["localhost:9092"])

        assert exc_info.value.code == 2


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args(["localhost:9092", "files", "out"])

        assert args.group_id is None
        assert args.missing_metadata is None
        assert args.json_logs is True
        assert args.log_level == "INFO"

    def test_rejects_unknown_policy(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["localhost:9092", "files", "out", "--missing-metadata", "retain"]
            )

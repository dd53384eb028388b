"""Unit tests for the CLI entry point."""

import sys
from unittest.mock import patch

import pytest

from exporter.main import main, parse_listen_address

ORACLE = "0x" + "0d" * 20
NODE = "0x" + "0e" * 20


class TestParseListenAddress:
    def test_host_and_port(self) -> None:
        assert parse_listen_address("127.0.0.1:9090") == ("127.0.0.1", 9090)

    def test_port_only(self) -> None:
        assert parse_listen_address(":9090") == ("0.0.0.0", 9090)

    def test_missing_port(self) -> None:
        with pytest.raises(ValueError, match="must be host:port"):
            parse_listen_address("localhost")

    def test_invalid_port(self) -> None:
        with pytest.raises(ValueError, match="invalid port"):
            parse_listen_address("localhost:http")

    def test_port_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            parse_listen_address(":70000")


class TestMain:
    def run_main(self, monkeypatch, argv, env=None):
        for key in ("ADDRESS", "NODE_ADDRESS", "LINK_ADDRESS", "RPC", "LADDR"):
            monkeypatch.delenv(key, raising=False)
        for key, value in (env or {}).items():
            monkeypatch.setenv(key, value)
        monkeypatch.setattr(sys, "argv", ["exporter", *argv])
        main()

    def test_missing_listen_address(self, monkeypatch) -> None:
        with pytest.raises(SystemExit) as exc:
            self.run_main(monkeypatch, ["--rpc", "http://node", "--address", ORACLE])
        assert exc.value.code == 2

    def test_invalid_oracle_address(self, monkeypatch) -> None:
        with pytest.raises(SystemExit) as exc:
            self.run_main(
                monkeypatch,
                ["--rpc", "http://node", "--address", "0x123", "--node-address", NODE],
                env={"LADDR": ":9090"},
            )
        assert exc.value.code == 2

    @patch("exporter.main.SlaExporter")
    def test_fatal_startup_error(self, exporter_cls, monkeypatch) -> None:
        """Failure to confirm the oracle aborts with exit code 1."""
        exporter_cls.connect.side_effect = RuntimeError("not an oracle")

        with pytest.raises(SystemExit) as exc:
            self.run_main(
                monkeypatch,
                [],
                env={"ADDRESS": ORACLE, "NODE_ADDRESS": NODE, "RPC": "http://node", "LADDR": ":9090"},
            )
        assert exc.value.code == 1

    @patch("exporter.main.asyncio.run")
    @patch("exporter.main.SlaExporter")
    def test_defaults_link_address(self, exporter_cls, asyncio_run, monkeypatch) -> None:
        self.run_main(
            monkeypatch,
            ["--miss-threshold", "20"],
            env={"ADDRESS": ORACLE, "NODE_ADDRESS": NODE, "RPC": "http://node", "LADDR": "127.0.0.1:9100"},
        )

        kwargs = exporter_cls.connect.call_args.kwargs
        assert kwargs["link_address"] == "0x514910771af9ca656af840dff83e8264ecf986ca"
        assert kwargs["miss_threshold"] == 20
        exporter_cls.connect.return_value.sink.serve.assert_called_once_with("127.0.0.1", 9100)
        asyncio_run.assert_called_once()

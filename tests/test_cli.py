from __future__ import annotations

from pathlib import Path

import pytest

from tailburn_backend import cli
from tailburn_backend.receiver import AckOutcome, IntegrityError, RetrievalError, RetrievalTranscript

from .conftest import FakeResolver


class CliResolver(FakeResolver):
    def self_address(self):
        return "127.0.0.1"

    def self_dns_name(self):
        return None


def test_parser_requires_target():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["send", "file.txt"])


def test_parser_defaults():
    args = cli.build_parser().parse_args(["send", "--target", "a@example.com", "file.txt"])
    assert args.timeout == 10
    assert args.port == 80
    assert args.wipe is False
    assert args.func is cli.cmd_send


def test_share_url():
    assert cli._share_url("box.ts.net", 80, "/abc") == "http://box.ts.net/abc"
    assert cli._share_url("100.64.0.1", 8080, "/abc") == "http://100.64.0.1:8080/abc"


def test_send_missing_file_exits_nonzero(tmp_path):
    assert cli.main(["send", "--target", "a@example.com", str(tmp_path / "nope.bin")]) == 1


def test_send_blank_target_exits_nonzero(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("x")
    assert cli.main(["send", "--target", " ", str(path)]) == 1


def test_send_bind_failure_exits_nonzero(tmp_path, monkeypatch):
    path = tmp_path / "f.txt"
    path.write_text("x")
    monkeypatch.setattr(cli, "TailscaleResolver", CliResolver)
    # 192.0.2.0/24 is TEST-NET-1 and never assigned locally.
    code = cli.main(["send", "--target", "a@example.com", "--host", "192.0.2.1", "--port", "0", str(path)])
    assert code == 1


def test_send_burns_on_timeout_and_wipes(tmp_path, monkeypatch, capsys):
    path = tmp_path / "f.txt"
    path.write_text("secret")
    monkeypatch.setattr(cli, "TailscaleResolver", CliResolver)

    code = cli.main(["send", "--target", "a@example.com", "--port", "0", "--timeout", "0.002", "--wipe", str(path)])

    assert code == 0
    assert not path.exists()
    out = capsys.readouterr().out
    assert "tailburn receive http://127.0.0.1:0/" in out
    assert "Timeout reached" in out


def _transcript(tmp_path, ack):
    return RetrievalTranscript(
        url="http://x/abc",
        suggested_name="a.txt",
        path=Path(tmp_path / "a.txt"),
        bytes_received=3,
        ack=ack,
    )


@pytest.mark.parametrize("ack", list(AckOutcome))
def test_receive_succeeds_whatever_the_ack(tmp_path, monkeypatch, ack):
    monkeypatch.setattr(cli, "retrieve", lambda url: _transcript(tmp_path, ack))
    assert cli.main(["receive", "http://x/abc"]) == 0


@pytest.mark.parametrize(
    "error",
    [RetrievalError("server rejected request: HTTP 410", status_code=410), IntegrityError(Path("t.bin"), 10, 5)],
)
def test_receive_hard_failure(monkeypatch, error):
    def boom(url):
        raise error

    monkeypatch.setattr(cli, "retrieve", boom)
    assert cli.main(["receive", "http://x/abc"]) == 1

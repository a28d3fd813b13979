import threading

from relayci.shell import CancelToken, ShellCommandRunner


def test_exit_codes_and_output(tmp_path) -> None:
    runner = ShellCommandRunner(poll_interval=0.05)

    ok = runner.run("echo $GREETING", cwd=tmp_path, env={"GREETING": "hello"})
    assert ok.ok and ok.stdout.strip() == "hello"

    bad = runner.run("echo oops >&2; exit 3", cwd=tmp_path, env={})
    assert not bad.ok
    assert bad.exit_code == 3
    assert "oops" in bad.stderr


def test_timeout_kills_the_command(tmp_path) -> None:
    result = ShellCommandRunner(poll_interval=0.05).run("exec sleep 5", cwd=tmp_path, env={}, timeout=0.2)
    assert result.timed_out
    assert not result.ok


def test_cancel_kills_the_command(tmp_path) -> None:
    token = CancelToken()
    threading.Timer(0.2, token.cancel).start()

    result = ShellCommandRunner(poll_interval=0.05).run("exec sleep 5", cwd=tmp_path, env={}, cancel=token)

    assert result.cancelled
    assert not result.ok

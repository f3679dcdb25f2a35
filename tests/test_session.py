import io

from meshtun.commands import Command, CommandRegistry, StringWriter
from meshtun.session import Session


def _out(buf):
    return buf.getvalue().decode("utf-8")


def _registry():
    reg = CommandRegistry()
    calls = []

    def callback(flags, args, writer):
        calls.append(args)
        writer.write_line("echo " + " | ".join(args))

    reg.register(Command(name="echo", short_description="echoes", callback=callback, help="Echo help"))
    return reg, calls


def _dump(session):
    buf = io.BytesIO()
    session.commands.dump(StringWriter(buf))
    return _out(buf)


def test_session_adds_logout_without_touching_registry():
    reg, _ = _registry()
    s = Session(reg)
    assert s.commands.lookup("logout") is not None
    assert reg.lookup("logout") is None


def test_dispatch_runs_command_with_shell_split_args():
    reg, calls = _registry()
    s = Session(reg)
    buf = io.BytesIO()
    s.dispatch("echo 'a b' c", StringWriter(buf))
    assert calls == [["a b", "c"]]
    assert _out(buf) == "echo a b | c\n"


def test_dispatch_empty_line_dumps():
    reg, calls = _registry()
    s = Session(reg)
    buf = io.BytesIO()
    s.dispatch("   ", StringWriter(buf))
    assert _out(buf) == _dump(s)
    assert calls == []


def test_dispatch_unknown_command():
    reg, _ = _registry()
    s = Session(reg)
    buf = io.BytesIO()
    s.dispatch("bogus thing", StringWriter(buf))
    assert _out(buf) == "did not understand: bogus thing\n" + _dump(s)


def test_dispatch_unbalanced_quotes_is_ignored():
    reg, calls = _registry()
    s = Session(reg)
    buf = io.BytesIO()
    s.dispatch("echo 'unterminated", StringWriter(buf))
    assert buf.getvalue() == b""
    assert calls == []


def test_dispatch_help_flag_shows_command_help():
    reg, calls = _registry()
    s = Session(reg)
    buf = io.BytesIO()
    s.dispatch("echo x -h", StringWriter(buf))
    assert calls == []
    assert _out(buf) == "echo - echoes\n  Echo help\n"


def test_dispatch_logout_closes():
    reg, _ = _registry()
    s = Session(reg)
    assert s.closed is False
    s.dispatch("logout", StringWriter(io.BytesIO()))
    assert s.closed is True
    assert s.wait_closed(0) is True


def test_close_is_idempotent():
    s = Session(CommandRegistry())
    s.close()
    s.close()
    assert s.closed is True


def test_complete_unique_match():
    reg, _ = _registry()
    s = Session(reg)
    line, candidates = s.complete("ec")
    assert line == "echo "
    assert candidates == ["echo"]


def test_complete_many_matches():
    reg, _ = _registry()
    s = Session(reg)
    line, candidates = s.complete("")
    assert line is None
    assert candidates == sorted(c.name for c in s.commands.all_commands())
    assert "logout" in candidates


def test_complete_no_match():
    s = Session(CommandRegistry())
    assert s.complete("zz") == (None, [])
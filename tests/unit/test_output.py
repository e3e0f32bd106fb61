"""Tests for console output."""

from odoo_restore.core.output import MASK, Console, Verbosity


def make_console(verbosity: int = Verbosity.NORMAL) -> Console:
    console = Console()
    console.configure(verbosity=verbosity, no_color=True)
    return console


class TestSecretMasking:
    def test_registered_secret_is_masked(self, capsys):
        console = make_console()
        console.register_secret("hunter22")

        console.info("connecting with hunter22")

        out = capsys.readouterr().out
        assert "hunter22" not in out
        assert MASK in out

    def test_short_values_are_not_registered(self, capsys):
        console = make_console()
        console.register_secret("ab")

        console.info("tab ab")

        assert "tab ab" in capsys.readouterr().out

    def test_errors_masked_on_stderr(self, capsys):
        console = make_console()
        console.register_secret("hunter22")

        console.print_err("failed for hunter22")

        assert "hunter22" not in capsys.readouterr().err


class TestLevels:
    def test_quiet_keeps_warnings_and_errors(self, capsys):
        console = make_console(Verbosity.QUIET)

        console.info("hidden")
        console.warn("careful")
        console.error("broken")

        captured = capsys.readouterr()
        assert "hidden" not in captured.out
        assert "careful" in captured.err
        assert "broken" in captured.err

    def test_verbose_needs_v(self, capsys):
        console = make_console()
        console.verbose("detail")
        assert "detail" not in capsys.readouterr().out

        console = make_console(Verbosity.VERBOSE)
        console.verbose("detail")
        assert "detail" in capsys.readouterr().out

    def test_brackets_printed_literally(self, capsys):
        console = make_console()

        console.info("copy [bold]file[/bold]")

        assert "[bold]file[/bold]" in capsys.readouterr().out

    def test_stage_header(self, capsys):
        console = make_console()

        console.stage(3, 9, "Resolving data directory")

        out = capsys.readouterr().out
        assert "[3/9]" in out
        assert "Resolving data directory" in out


class TestConfirmation:
    def test_skip_confirm(self):
        assert make_console().confirm_critical("drop x", "x", skip_confirm=True)

    def test_matching_name_confirms(self, monkeypatch):
        console = make_console()
        monkeypatch.setattr(console._console, "input", lambda prompt: " acme ")

        assert console.confirm_critical("replace acme", "acme")

    def test_eof_declines(self, monkeypatch):
        console = make_console()

        def raise_eof(prompt):
            raise EOFError

        monkeypatch.setattr(console._console, "input", raise_eof)

        assert not console.confirm_critical("replace acme", "acme")

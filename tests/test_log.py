import pytest

from stackflow.log import (
    LogLevel,
    get_log_level,
    log_debug,
    log_error,
    log_info,
    log_notice,
    log_warn,
    set_log_level,
)


@pytest.fixture(autouse=True)
def restore_level():
    saved = get_log_level()
    yield
    set_log_level(saved)


def test_set_and_get_level():
    set_log_level(LogLevel.DEBUG)
    assert get_log_level() is LogLevel.DEBUG
    set_log_level(4)
    assert get_log_level() is LogLevel.WARN


def test_invalid_level_rejected():
    with pytest.raises(ValueError):
        set_log_level(42)


def test_error_format(capsys):
    log_error("boom")
    out = capsys.readouterr().out
    name = "test_error_format"
    prefix = "\033[1;30;31m[E][" + name.rjust(32) + "]["
    suffix = "]: boom\033[0m\n"
    assert out[: len(prefix)] == prefix
    assert out[-len(suffix):] == suffix
    line_field = out[len(prefix):-len(suffix)]
    assert len(line_field) >= 4
    assert line_field.strip().isdigit()


def test_error_printed_at_lowest_level(capsys):
    set_log_level(LogLevel.MIN)
    log_error("still here")
    assert "still here" in capsys.readouterr().out


def test_warn_level_filters_info_and_debug(capsys):
    set_log_level(LogLevel.WARN)
    log_info("info message")
    log_debug("debug message")
    log_notice("notice message")
    assert capsys.readouterr().out == ""
    log_warn("warn message")
    out = capsys.readouterr().out
    assert out.startswith("\033[1;30;33m[W][")
    assert "warn message" in out


def test_info_level_prints_notice_and_info_not_debug(capsys):
    set_log_level(LogLevel.INFO)
    log_notice("n-msg")
    log_info("i-msg")
    log_debug("d-msg")
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("\033[1;30;35m[N][")
    assert lines[1].startswith("\033[1;30;32m[I][")


def test_debug_level_prints_debug(capsys):
    set_log_level(LogLevel.DEBUG)
    log_debug("details")
    out = capsys.readouterr().out
    assert out.startswith("\033[1;30;37m[D][")
    assert out.endswith("details\033[0m\n")
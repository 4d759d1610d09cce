import pytest

from conftest import FakePage
from errors import MissingElement
from status import StatusReporter


@pytest.mark.asyncio
async def test_update_shows_overlay_and_logs(capsys):
    page = FakePage()
    status = StatusReporter(page)

    await status.update("Checking renewal status...")

    assert page.status_messages == ["Checking renewal status..."]
    assert status.history == ["Checking renewal status..."]
    assert "[vps-renew] Checking renewal status..." in capsys.readouterr().out


def test_log_is_console_only(capsys):
    page = FakePage()
    StatusReporter(page, prefix="[test]").log("hello")

    assert page.status_messages == []
    assert capsys.readouterr().out == "[test] hello\n"


@pytest.mark.asyncio
async def test_step_error_has_no_traceback(capsys):
    page = FakePage()
    await StatusReporter(page).error("Failed.", MissingElement("extend button not found"))

    captured = capsys.readouterr()
    assert "ERROR: MissingElement: extend button not found" in captured.out
    assert "Traceback" not in captured.err
    assert page.status_messages == ["Failed."]


@pytest.mark.asyncio
async def test_unexpected_error_prints_traceback(capsys):
    page = FakePage()
    try:
        raise KeyError("boom")
    except KeyError as e:
        await StatusReporter(page).error("Failed.", e)

    assert "Traceback" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_remove_only_when_visible():
    page = FakePage()
    status = StatusReporter(page)

    await status.remove()
    assert status.visible is False

    await status.update("x")
    await status.remove(after=0.01)
    assert page.status_visible is False
    assert status.visible is False

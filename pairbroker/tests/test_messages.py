from datetime import datetime, timezone

from pairbroker.messages import Branding, session_string_message, welcome_message


BRANDING = Branding(
    bot_name="TEST-BOT",
    owner="tester",
    timezone="Africa/Dar_es_Salaam",
    channel_url="https://example.com/channel",
    repo_url="https://example.com/repo",
)


def test_session_string_message_wraps_token():
    text = session_string_message("TEST-BOT", "TEST-BOT>>>QUJD")

    assert text.startswith("TEST-BOT Session String:")
    assert "```TEST-BOT>>>QUJD```" in text


def test_welcome_message_uses_configured_timezone():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    text = welcome_message(BRANDING, now=now)

    assert "TIME: *15:00:00*" in text
    assert "DATE: 01/01/2024" in text
    assert "OWNER: tester" in text
    assert "https://example.com/repo" in text


def test_welcome_message_unknown_timezone_falls_back_to_utc():
    branding = Branding(
        bot_name="TEST-BOT",
        owner="tester",
        timezone="Nowhere/Invalid",
        channel_url="",
        repo_url="",
    )
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert "TIME: *12:00:00*" in welcome_message(branding, now=now)

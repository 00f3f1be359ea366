from protokoll.bot.replies import format_summary_reply
from protokoll.models import SessionKey, SummaryResult, SummaryStatus, utc_now

KEY = SessionKey("guild1", "voice2")


def result(status, text=None, **kwargs):
    return SummaryResult(key=KEY, status=status, closed_at=utc_now(), text=text, **kwargs)


def test_empty_session_reply():
    reply = format_summary_reply(result(SummaryStatus.EMPTY))
    assert reply == "Disconnected. No transcript found or nothing to summarise."


def test_failed_summary_reply():
    reply = format_summary_reply(result(SummaryStatus.FAILED, error="backend down"))
    assert reply == "Disconnected. No summary available: backend down"


def test_not_active_reply():
    assert "not transcribing" in format_summary_reply(result(SummaryStatus.NOT_ACTIVE))


def test_summary_reply_names_saved_file():
    reply = format_summary_reply(
        result(SummaryStatus.SUMMARIZED, "- Punkt"),
        {"text": "/data/summaries/guild1-voice2-2025-04-27-19-00-05.txt"},
    )

    assert reply.startswith("📝 **Meeting Protokoll** saved to `guild1-voice2-2025-04-27-19-00-05.txt`:")
    assert reply.endswith("\n\n- Punkt")


def test_incomplete_transcript_is_flagged():
    reply = format_summary_reply(result(SummaryStatus.SUMMARIZED, "- Punkt", transcript_complete=False))
    assert "incomplete" in reply


def test_long_summary_is_truncated():
    reply = format_summary_reply(result(SummaryStatus.SUMMARIZED, "a" * 5000), limit=2000)

    assert len(reply) == 2000
    assert reply.endswith("…")

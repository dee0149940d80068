from datetime import datetime, timezone

from assistant.services.notes import format_note_timestamp, merge_notes

NOW = datetime(2026, 3, 10, 7, 30, tzinfo=timezone.utc)


class TestMergeNotes:
    def test_first_note_is_stored_plain(self):
        assert merge_notes(None, "Wants a quote", NOW) == "Wants a quote"

    def test_appends_with_local_timestamp(self):
        merged = merge_notes("Wants a quote", "Call back Friday", NOW)
        assert merged == "Wants a quote\n\n[10/03/2026, 09:30] Call back Friday"

    def test_merging_twice_is_idempotent(self):
        once = merge_notes("Wants a quote", "Call back Friday", NOW)
        twice = merge_notes(once, "Call back Friday", NOW)
        assert twice == once
        assert twice.count("Call back Friday") == 1

    def test_duplicate_check_ignores_case(self):
        assert merge_notes("Wants a QUOTE by Monday", "wants a quote", NOW) == "Wants a QUOTE by Monday"

    def test_empty_note_leaves_existing(self):
        assert merge_notes("Wants a quote", "   ", NOW) == "Wants a quote"
        assert merge_notes(None, None, NOW) is None


class TestFormatNoteTimestamp:
    def test_naive_datetime_is_treated_as_utc(self):
        assert format_note_timestamp(datetime(2026, 3, 10, 22, 15), "Africa/Johannesburg") == "11/03/2026, 00:15"

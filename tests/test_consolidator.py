import pytest

from common.schemas import Speaker, TranscriptRow
from transcript_service.consolidator import TranscriptConsolidator, merge_paragraph_text


def final(row_id, speaker, text):
    return TranscriptRow(id=row_id, speaker=speaker, text=text, is_final=True)


class TestMergeParagraphText:
    def test_extension_replaces(self):
        assert merge_paragraph_text("How are", "how are you doing") == "how are you doing"

    def test_contained_fragment_kept_out(self):
        assert merge_paragraph_text("I think we should go", "We should") == "I think we should go"

    def test_unrelated_text_concatenated(self):
        assert merge_paragraph_text("First part.", "  Second   part. ") == "First part. Second part."


class TestTranscriptConsolidator:
    @pytest.fixture
    def consolidator(self):
        return TranscriptConsolidator(row_cap=300)

    def test_consecutive_same_speaker_rows_coalesce(self, consolidator):
        consolidator.append(final("me-final-0", Speaker.local, "Hello."))
        consolidator.append(final("me-final-1", Speaker.local, "I am here."))
        rows = consolidator.render()
        assert len(rows) == 1
        assert rows[0].id == "me-final-0"
        assert rows[0].text == "Hello. I am here."

    def test_prefix_extension_appears_once(self, consolidator):
        consolidator.append(final("them-final-0", Speaker.remote, "Tell me about"))
        consolidator.append(final("them-final-1", Speaker.remote, "Tell me about your last project"))
        rows = consolidator.render()
        assert [r.text for r in rows] == ["Tell me about your last project"]

    def test_speaker_change_starts_new_row(self, consolidator):
        consolidator.append(final("them-final-0", Speaker.remote, "Question?"))
        consolidator.append(final("me-final-0", Speaker.local, "Answer."))
        consolidator.append(final("them-final-1", Speaker.remote, "Question?"))
        rows = consolidator.render()
        assert [(r.speaker, r.text) for r in rows] == [
            (Speaker.remote, "Question?"),
            (Speaker.local, "Answer."),
            (Speaker.remote, "Question?"),
        ]

    def test_interim_attached_to_latest_row_of_speaker(self, consolidator):
        consolidator.append(final("them-final-0", Speaker.remote, "First."))
        consolidator.append(final("me-final-0", Speaker.local, "Mine."))
        consolidator.set_interim(Speaker.remote, "and then")
        rows = consolidator.render()
        assert len(rows) == 2
        assert rows[0].interim == "and then"
        assert rows[1].interim is None

    def test_standalone_interim_replaced_in_place(self, consolidator):
        consolidator.set_interim(Speaker.remote, "How")
        consolidator.set_interim(Speaker.remote, "How are")
        rows = consolidator.render()
        assert len(rows) == 1
        assert rows[0].id == "them-interim"
        assert rows[0].text == "How are"
        assert not rows[0].is_final

    def test_clearing_interim(self, consolidator):
        consolidator.set_interim(Speaker.local, "typing")
        consolidator.set_interim(Speaker.local, "")
        assert consolidator.render() == []

    def test_render_does_not_mutate_paragraphs(self, consolidator):
        consolidator.append(final("me-final-0", Speaker.local, "Done."))
        consolidator.set_interim(Speaker.local, "more")
        consolidator.render()
        consolidator.set_interim(Speaker.local, "")
        assert consolidator.render()[0].interim is None

    def test_row_cap_keeps_most_recent(self):
        consolidator = TranscriptConsolidator(row_cap=300)
        for i in range(305):
            speaker = Speaker.local if i % 2 == 0 else Speaker.remote
            consolidator.append(final(f"row-{i}", speaker, f"utterance {i}"))
        rows = consolidator.render()
        assert len(rows) == 300
        assert [r.text for r in rows] == [f"utterance {i}" for i in range(5, 305)]

    def test_row_cap_counts_interim_rows(self):
        consolidator = TranscriptConsolidator(row_cap=2)
        consolidator.append(final("me-final-0", Speaker.local, "a"))
        consolidator.append(final("them-final-0", Speaker.remote, "b"))
        consolidator.append(final("me-final-1", Speaker.local, "c"))
        consolidator.set_interim(Speaker.remote, "d")
        rows = consolidator.render()
        assert [r.text for r in rows] == ["b", "c"]
        assert rows[0].interim == "d"

    def test_last_final_is_raw_text(self, consolidator):
        assert consolidator.last_final(Speaker.remote) is None
        consolidator.append(final("them-final-0", Speaker.remote, "Why?"))
        consolidator.append(final("them-final-1", Speaker.remote, "Why  not?"))
        assert consolidator.last_final(Speaker.remote) == "Why not?"
        assert consolidator.last_final(Speaker.local) is None

    def test_clear(self, consolidator):
        consolidator.append(final("me-final-0", Speaker.local, "x"))
        consolidator.set_interim(Speaker.remote, "y")
        consolidator.clear()
        assert consolidator.render() == []
        assert consolidator.last_final(Speaker.local) is None
        assert len(consolidator) == 0

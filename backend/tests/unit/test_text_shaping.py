"""
Unit tests for text shaping
Tests SSML pacing markup and idempotence
"""
import pytest

from voicecaller.domain.services.text_shaping import (
    FILLER_BREAK,
    QUESTION_BREAK,
    SENTENCE_BREAK,
    normalize_punctuation,
    shape,
    strip_container_markup,
    to_plain_text,
)


class TestNormalizePunctuation:
    """Punctuation cleanup before shaping"""

    def test_collapses_repeats(self):
        assert normalize_punctuation("Hello...  world!!") == "Hello. world!"

    def test_adds_terminal_period(self):
        assert normalize_punctuation("sounds good") == "sounds good."

    def test_keeps_question_mark(self):
        assert normalize_punctuation("  ready??  ") == "ready?"

    def test_empty(self):
        assert normalize_punctuation("   ") == ""


class TestShape:
    """Markup insertion"""

    def test_wraps_in_speak(self):
        shaped = shape("Hi there")
        assert shaped == "<speak>Hi there.</speak>"

    def test_empty_text(self):
        assert shape("") == ""
        assert shape("   ") == ""

    def test_full_example(self):
        """Filler, sentence and question pauses together"""
        shaped = shape("Well, that's great. What kind of business do you run?")

        assert shaped == (
            f"<speak>Well,{FILLER_BREAK} that's great.{SENTENCE_BREAK} "
            f"What kind of business do you run?{QUESTION_BREAK}</speak>"
        )

    def test_no_sentence_break_at_end(self):
        shaped = shape("Great. Thanks.")
        assert shaped == f"<speak>Great.{SENTENCE_BREAK} Thanks.</speak>"

    def test_reaction_phrase_emphasis(self):
        shaped = shape("Oh really? Tell me more.")

        assert shaped == (
            f'<speak><emphasis level="moderate">Oh really?</emphasis>{QUESTION_BREAK} '
            f"Tell me more.</speak>"
        )

    def test_filler_inside_word_not_marked(self):
        """'So,' only counts as a filler when it is a whole word"""
        shaped = shape("Also, we build websites.")
        assert FILLER_BREAK not in shaped

    def test_escapes_xml(self):
        shaped = shape("Plans under $500 & up <today>")

        assert "&amp;" in shaped
        assert "&lt;today&gt;" in shaped


class TestIdempotence:
    """shape(shape(x)) == shape(x)"""

    @pytest.mark.parametrize("text", [
        "Well, that's great. What kind of business do you run?",
        "Oh really? That's interesting! Cool!",
        "Um, so, I mean, we can help... honestly!!",
        "Tom & Jerry's <Bakery>? Nice!",
        "Hmm, I get it. You know, most owners say that.",
        "",
    ])
    def test_shape_is_idempotent(self, text):
        once = shape(text)
        assert shape(once) == once

    def test_plain_text_round_trip(self):
        """Stripping markup gives back the normalized words"""
        text = "Well, prices < $500 & up. Interested?"
        assert to_plain_text(shape(text)) == normalize_punctuation(text)


class TestStripContainerMarkup:

    def test_keeps_breaks_drops_wrappers(self):
        shaped = shape("Nice! Want a quote?")
        stripped = strip_container_markup(shaped)

        assert "<speak>" not in stripped
        assert "<emphasis" not in stripped
        assert QUESTION_BREAK in stripped

    def test_unshaped_text_unchanged(self):
        assert strip_container_markup("plain text") == "plain text"

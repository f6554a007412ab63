from exam_insight.utils.text_cleanup import clean_extracted_text


def test_empty_input():
    assert clean_extracted_text("") == ""
    assert clean_extracted_text("   \n\n  ") == ""


def test_strips_zero_width_and_control_characters():
    assert clean_extracted_text("Def\u200bine the\x00 term\ufeff") == "Define the term"


def test_decodes_percent_escaped_punctuation():
    assert clean_extracted_text("What%20is%20a%20heap%3F") == "What is a heap?"


def test_joins_words_hyphenated_across_lines():
    assert clean_extracted_text("Explain the algo-\nrithm here") == "Explain the algorithm here"


def test_collapses_horizontal_whitespace():
    assert clean_extracted_text("Explain \t  stacks\u00a0 and  queues") == "Explain stacks and queues"


def test_drops_short_noise_lines_but_keeps_paragraph_breaks():
    text = "ab\nWhat is a stack?\n|\n\n\n\nWhat is a queue?"
    assert clean_extracted_text(text) == "What is a stack?\n\nWhat is a queue?"


def test_normalises_carriage_returns():
    assert clean_extracted_text("Line one\r\nLine two\rLine three") == (
        "Line one\nLine two\nLine three"
    )


def test_page_breaks_become_line_breaks():
    assert clean_extracted_text("Explain stacks\fDefine queues") == (
        "Explain stacks\nDefine queues"
    )
    assert clean_extracted_text("Explain stacks\vDefine queues") == (
        "Explain stacks\nDefine queues"
    )


def test_cleaning_is_stable_on_clean_text():
    text = "1. Explain recursion.\n\n2. Define a binary tree."
    once = clean_extracted_text(text)
    assert once == text
    assert clean_extracted_text(once) == once

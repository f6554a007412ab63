from exam_insight.utils.question_segmenter import segment_questions


def test_empty_text_has_no_questions():
    assert segment_questions("") == []
    assert segment_questions("  \n ") == []


def test_numbered_questions_drop_the_header():
    text = (
        "Mid-term Paper 2023\n"
        "1. Explain the working of a stack.\n"
        "2. Define a binary search tree with an example.\n"
        "3) What is recursion in programming?"
    )
    assert segment_questions(text) == [
        "Explain the working of a stack.",
        "Define a binary search tree with an example.",
        "What is recursion in programming?",
    ]


def test_q_prefixed_markers():
    text = "Q1. Describe the TCP handshake steps.\nQ2 Explain normalization in databases."
    assert segment_questions(text) == [
        "Describe the TCP handshake steps.",
        "Explain normalization in databases.",
    ]


def test_multiline_question_is_joined():
    text = "1. Explain the difference between\nprocesses and threads.\n2. What is paging in memory?"
    assert segment_questions(text)[0] == "Explain the difference between processes and threads."


def test_decimal_at_line_start_is_not_a_marker():
    text = "3.14 is an approximation of pi used widely"
    assert segment_questions(text) == [text]


def test_short_fragments_are_discarded():
    text = "1. Yes\n2. Explain hashing with an example."
    assert segment_questions(text) == ["Explain hashing with an example."]


def test_unnumbered_paragraphs():
    text = "Explain the algorithm for sorting an array.\n\nDescribe a heap data structure."
    assert segment_questions(text) == [
        "Explain the algorithm for sorting an array.",
        "Describe a heap data structure.",
    ]


def test_block_of_question_lines_is_split_at_question_marks():
    text = "What is a heap?\nWhat is a queue used for?"
    assert segment_questions(text) == ["What is a heap?", "What is a queue used for?"]


def test_single_sentence():
    assert segment_questions("Explain the algorithm for sorting an array.") == [
        "Explain the algorithm for sorting an array."
    ]

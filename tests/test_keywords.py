from linker.parser.keywords import extract_keywords, similarity


def test_extract_keywords_lowercases_and_strips_punctuation():
    words = extract_keywords("Focus NOT visible on the Search-button!")
    assert words == {"focus", "visible", "search", "button"}

def test_extract_keywords_drops_short_tokens_and_stop_words():
    assert extract_keywords("the quick with being were been") == {"quick"}
    assert extract_keywords("h1 to h3 tab") == set()

def test_extract_keywords_empty_input():
    assert extract_keywords("") == set()
    assert extract_keywords(None) == set()

def test_similarity_is_jaccard():
    a = {"heading", "level", "skips"}
    b = {"heading", "level", "missing", "page"}
    assert similarity(a, b) == 2 / 5

def test_similarity_of_empty_sets_is_zero():
    assert similarity(set(), set()) == 0.0
    assert similarity({"focus"}, set()) == 0.0

def test_similarity_is_symmetric_and_bounded():
    a = extract_keywords("Image missing alternative text on logo")
    b = extract_keywords("Logo image has no alternative text")
    assert similarity(a, b) == similarity(b, a)
    assert 0.0 <= similarity(a, b) <= 1.0

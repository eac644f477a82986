"""End-to-end ranking, filtering and highlighting against a real index."""

from docsearch_server.domain.model import CanonicalDocument


def _doc(title: str, content: str, **kwargs) -> CanonicalDocument:
    return CanonicalDocument(title=title, content=content, **kwargs)


def test_single_document_round_trip(harness):
    document = _doc("Test Document", "This is test content for indexing", category="test", tags=["sample", "test"])
    harness.add(document)

    hits, total = harness.search("test")
    assert total == 1
    hit = hits[0]
    assert hit.id == document.id
    assert hit.title == "Test Document"
    assert hit.content == "This is test content for indexing"
    assert hit.category == "test"
    assert hit.tags == ["sample", "test"]
    assert hit.score > 0
    assert hit.highlighted_title is None
    assert hit.highlighted_content is None


def test_three_programming_documents(harness, programming_documents):
    harness.add(*programming_documents)

    hits, total = harness.search("programming")
    assert total == 3
    assert {hit.id for hit in hits} == {doc.id for doc in programming_documents}


def test_category_is_not_searchable_text(harness):
    harness.add(_doc("Doc", "body", category="astronomy"))
    assert harness.search("astronomy")[1] == 0


def test_empty_tags_come_back_as_empty_list(harness):
    harness.add(_doc("No Tags Document", "This document has no tags", category="test", tags=[]))

    hits, total = harness.search("tags")
    assert total == 1
    assert hits[0].tags == []


def test_missing_category_comes_back_as_none(harness):
    harness.add(_doc("No Category Document", "This document has no category", tags=["uncategorized"]))

    hits, total = harness.search("category")
    assert total == 1
    assert hits[0].category is None


def test_category_filter(harness):
    harness.add(
        _doc("Tech Article", "About technology", category="tech"),
        _doc("Science Article", "About science", category="science"),
        _doc("Tech News", "Latest technology news", category="tech"),
    )

    hits, total = harness.search("Article", category="tech")
    assert total == 1
    assert hits[0].title == "Tech Article"

    hits, total = harness.search("technology", category="tech")
    assert total == 2
    assert all(hit.category == "tech" for hit in hits)


def test_category_filter_is_exact_match(harness):
    harness.add(_doc("Tech Article", "About technology", category="tech"))
    assert harness.search("article", category="Tech")[1] == 0
    assert harness.search("article", category="te")[1] == 0


def test_empty_string_category_matches_nothing(harness):
    harness.add(_doc("Uncategorized", "words"), _doc("Categorized", "words", category="misc"))
    assert harness.search("words", category="")[1] == 0


def test_repeated_title_term_outranks_single_body_mention(harness):
    strong = _doc("Kotlin Kotlin Kotlin", "This document mentions kotlin many times", category="programming")
    weak = _doc("Java Article", "Brief mention of kotlin", category="programming")
    harness.add(weak, strong)

    hits, total = harness.search("kotlin")
    assert total == 2
    assert hits[0].id == strong.id
    assert hits[0].score > hits[1].score


def test_title_match_outranks_content_match(harness):
    in_content = _doc("Notes", "A short note about coroutines")
    in_title = _doc("Coroutines", "A short note about concurrency")
    harness.add(in_content, in_title)

    hits, _ = harness.search("coroutines")
    assert [hit.id for hit in hits] == [in_title.id, in_content.id]


def test_limit_truncates_but_total_counts_everything(harness):
    harness.add(*(_doc(f"Document {i}", f"Test content number {i}", category="test") for i in range(1, 6)))

    hits, total = harness.search("test", limit=3)
    assert total == 5
    assert len(hits) == 3
    assert [hit.score for hit in hits] == sorted((hit.score for hit in hits), reverse=True)


def test_equal_scores_keep_insertion_order(harness):
    first = _doc("Same", "identical body")
    second = _doc("Same", "identical body")
    harness.add(first, second)

    hits, _ = harness.search("identical")
    assert [hit.id for hit in hits] == [first.id, second.id]


def test_search_matches_tags(harness):
    harness.add(
        _doc("Article 1", "Content", tags=["kotlin", "programming", "jvm"]),
        _doc("Article 2", "Content", tags=["python", "programming"]),
    )

    hits, total = harness.search("kotlin")
    assert total == 1
    assert "kotlin" in hits[0].tags


def test_special_characters_are_ignored(harness):
    harness.add(
        _doc("Special & Characters: Test!", "Content with @special #characters $100 and more...", category="test")
    )

    hits, total = harness.search("special")
    assert total == 1
    assert "Special" in hits[0].title


def test_no_results(harness):
    harness.add(_doc("Sample Document", "Some content here", category="test"))

    hits, total = harness.search("nonexistent")
    assert total == 0
    assert hits == []


def test_empty_index_returns_nothing(harness):
    assert harness.search("anything") == ([], 0)


def test_large_content_is_returned_in_full(harness):
    harness.add(_doc("Large Document", "This is a test. " * 1000, category="test"))

    hits, total = harness.search("test")
    assert total == 1
    assert len(hits[0].content) > 10000


def test_many_documents(harness):
    harness.add(*(_doc(f"Concurrent Doc {i}", f"Content for document {i}", category="concurrent") for i in range(10)))
    assert harness.search("concurrent", limit=20)[1] == 10


def test_exact_and_sloppy_phrases(harness):
    exact = _doc("Exact", "structured concurrency in kotlin")
    loose = _doc("Loose", "structured and safe concurrency")
    harness.add(exact, loose)

    hits, total = harness.search('"structured concurrency"')
    assert total == 1
    assert hits[0].id == exact.id

    hits, total = harness.search('"structured concurrency"~2')
    assert total == 2
    assert hits[0].id == exact.id


def test_phrase_does_not_cross_tag_values(harness):
    harness.add(_doc("Tagged", "body", tags=["machine", "learning"]))
    assert harness.search('tags:"machine learning"')[1] == 0


def test_prefix_wildcard_and_fuzzy(harness, programming_documents):
    harness.add(*programming_documents)

    assert harness.search("prog*")[1] == 3
    assert harness.search("k?tlin")[1] == 1
    assert harness.search("kotlen~")[1] == 1
    assert harness.search("kotlen~0")[1] == 0
    assert harness.search("pyth*n")[1] == 1


def test_boolean_operators(harness, programming_documents):
    kotlin_doc, java_doc, python_doc = programming_documents
    harness.add(*programming_documents)

    hits, total = harness.search("jvm AND kotlin")
    assert total == 1
    assert hits[0].id == kotlin_doc.id

    hits, total = harness.search("jvm -java")
    assert [hit.id for hit in hits] == [kotlin_doc.id]

    assert harness.search("jvm OR python")[1] == 3
    assert harness.search("+programming -scripting")[1] == 2
    assert harness.search("-java")[1] == 0
    hits, _ = harness.search("(java OR python) AND scripting")
    assert [hit.id for hit in hits] == [python_doc.id]
    assert java_doc.id not in {hit.id for hit in hits}


def test_field_scoping(harness):
    in_title = _doc("Kotlin guide", "a guide")
    in_body = _doc("Guide", "about kotlin")
    harness.add(in_title, in_body)

    hits, total = harness.search("title:kotlin")
    assert total == 1
    assert hits[0].id == in_title.id
    assert harness.search("content:kotlin")[0][0].id == in_body.id


def test_boost_changes_ranking(harness):
    java = _doc("Java", "jvm language")
    kotlin = _doc("Kotlin", "jvm language")
    harness.add(java, kotlin)

    hits, _ = harness.search("java kotlin^5")
    assert hits[0].id == kotlin.id


def test_highlighting_marks_title_terms(harness):
    harness.add(_doc("Lucene Search Engine", "Apache Lucene is a powerful full-text search library", category="search"))

    hits, total = harness.search("Lucene", highlight=True)
    assert total == 1
    assert hits[0].highlighted_title == "<mark>Lucene</mark> Search Engine"
    assert hits[0].highlighted_content == "Apache <mark>Lucene</mark> is a powerful full-text search library"


def test_highlighting_leaves_unmatched_fields_none(harness):
    harness.add(_doc("Lucene Search Engine", "Apache Lucene is a powerful full-text search library"))

    hits, _ = harness.search("engine", highlight=True)
    assert hits[0].highlighted_title == "Lucene Search <mark>Engine</mark>"
    assert hits[0].highlighted_content is None


def test_highlighting_ignores_category_and_prohibited_terms(harness):
    harness.add(_doc("Kotlin and Java", "kotlin beats java", category="kotlin"))

    hits, _ = harness.search("kotlin -scala java", category="kotlin", highlight=True)
    assert hits[0].highlighted_title == "<mark>Kotlin</mark> and <mark>Java</mark>"


def test_highlighting_long_content_returns_fragment(harness):
    content = "Filler sentence goes here. " * 20 + "Kotlin coroutines are great. " + "More filler text here. " * 20
    harness.add(_doc("Long", content))

    hits, _ = harness.search("coroutines", highlight=True)
    fragment = hits[0].highlighted_content
    assert fragment.startswith("Kotlin <mark>coroutines</mark> are great.")
    assert len(fragment.replace("<mark>", "").replace("</mark>", "")) <= 150

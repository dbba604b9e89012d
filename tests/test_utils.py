from column_compiler.utils import (
    artifact_filename,
    create_article_html,
    ordinal_width,
    remove_files,
    sanitize_filename,
)


def test_sanitize_filename_replaces_illegal_characters():
    assert sanitize_filename('01 | What is "TCP"?') == '01___What_is__TCP'


def test_sanitize_filename_falls_back_for_empty_titles():
    assert sanitize_filename("") == "untitled"
    assert sanitize_filename("???") == "untitled"


def test_sanitize_filename_truncates_long_titles():
    assert len(sanitize_filename("x" * 300)) == 100


def test_artifact_filename_is_one_based_and_zero_padded():
    assert artifact_filename(0, "Intro", 10) == "001_Intro.pdf"
    assert artifact_filename(41, "Wrap up", 42) == "042_Wrap_up.pdf"


def test_artifact_filename_widens_for_large_collections():
    assert ordinal_width(999) == 3
    assert ordinal_width(1000) == 4
    assert artifact_filename(6, "a", 1000) == "0007_a.pdf"


def test_lexical_order_matches_item_order():
    names = [artifact_filename(i, "t", 120) for i in range(120)]
    assert sorted(names) == names


def test_create_article_html_escapes_title():
    page = create_article_html("<b>A & B</b>", "<p>x</p>")
    assert "&lt;b&gt;A &amp; B&lt;/b&gt;" in page
    assert "<p>x</p>" in page


def test_remove_files_counts_only_existing(tmp_path):
    existing = tmp_path / "a.pdf"
    existing.write_bytes(b"x")
    assert remove_files([str(existing), str(tmp_path / "missing.pdf")]) == 1
    assert not existing.exists()


def test_long_cjk_titles_fit_the_filename_byte_limit():
    name = artifact_filename(0, "深" * 100, 10)
    assert len(name.encode("utf-8")) <= 255
    assert name.startswith("001_深")
    assert name.endswith(".pdf")


def test_byte_truncation_keeps_whole_characters():
    title = sanitize_filename("a" + "深" * 100)
    assert len(title.encode("utf-8")) <= 200
    assert title == "a" + "深" * 66

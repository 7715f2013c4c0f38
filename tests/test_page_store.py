import pytest

from errors import InvalidInput
from page_store import extract_page_metadata

HTML = """
<html>
  <head>
    <title> Oak Furniture Workshop </title>
    <meta name="description" content=" Handmade tables and chairs. ">
    <script>var tracking = "do not count these words";</script>
  </head>
  <body>
    <h1>Our workshop</h1>
    <h2>Tables</h2><h2>Chairs</h2>
    <p>Every piece is cut by hand.</p>
  </body>
</html>
"""


def test_extract_page_metadata():
    meta = extract_page_metadata(HTML)

    assert meta["title"] == "Oak Furniture Workshop"
    assert meta["description"] == "Handmade tables and chairs."
    assert meta["h1_count"] == 1
    assert meta["h2_count"] == 2
    assert meta["word_count"] == 10


def test_extract_page_metadata_missing_tags():
    meta = extract_page_metadata("<html><head></head><body>Content</body></html>")

    assert meta["title"] == ""
    assert meta["description"] == ""
    assert meta["h1_count"] == 0
    assert meta["word_count"] == 1


def test_add_page_from_html_upserts(page_store, site):
    first = page_store.add_page_from_html(site.id, "https://example.com/", HTML)
    second = page_store.add_page_from_html(site.id, "https://example.com/", "<title>Renamed</title>")

    pages = page_store.list_pages(site.id)
    assert len(pages) == 1
    assert first.id == second.id
    assert pages[0].title == "Renamed"


def test_get_site(page_store, site):
    assert page_store.get_site(site.id).domain == "example.com"


@pytest.mark.parametrize("site_id", [0, -3, "1", None, True, 9999])
def test_get_site_rejects_bad_ids(page_store, site, site_id):
    with pytest.raises(InvalidInput):
        page_store.get_site(site_id)

from dataforseo import CrawlResult
from models import MetadataSource, PageRecord
from resolver import MetadataResolver, select_source


def test_external_source_wins_when_configured():
    assert select_source(True) is MetadataSource.EXTERNAL
    assert select_source(False) is MetadataSource.LOCAL


def test_external_pages_never_mix_in_local_fields():
    crawl = [CrawlResult(url="https://example.com/", title="Crawled title", h1_count=1)]
    local = [PageRecord(id=3, site_id=1, url="https://example.com/", title="Stored title",
                        description="Stored description", word_count=900)]

    resolver = MetadataResolver(MetadataSource.EXTERNAL, crawl_results=crawl, page_records=local)
    meta = resolver.resolve(0)

    assert meta.source is MetadataSource.EXTERNAL
    assert meta.title == "Crawled title"
    assert meta.description is None
    assert meta.word_count is None
    assert meta.page_id is None


def test_local_pages_keep_their_id():
    local = [PageRecord(id=3, site_id=1, url="https://example.com/", title="Stored title", h1_count=1)]
    resolver = MetadataResolver(MetadataSource.LOCAL, page_records=local)

    meta = resolver.resolve(0)
    assert meta.source is MetadataSource.LOCAL
    assert meta.page_id == 3
    assert meta.image_count is None


def test_pages_without_metadata_still_count():
    crawl = [CrawlResult(url="https://example.com/"), CrawlResult(url="https://example.com/a", title="A")]
    resolver = MetadataResolver(MetadataSource.EXTERNAL, crawl_results=crawl)

    assert resolver.page_count == 2
    assert resolver.resolve(0) is None
    assert resolver.resolve(1).title == "A"
    assert resolver.resolve(5) is None

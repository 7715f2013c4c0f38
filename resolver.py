"""Pick one metadata source per audit run and resolve pages against it."""

from models import MetadataSource, PageMetadata


def select_source(provider_configured):
    """External crawl data always wins when a provider is configured."""
    return MetadataSource.EXTERNAL if provider_configured else MetadataSource.LOCAL


def from_crawl_result(result):
    if not result.has_metadata:
        return None
    return PageMetadata(
        url=result.url,
        source=MetadataSource.EXTERNAL,
        page_id=None,
        title=result.title,
        description=result.description,
        h1_count=result.h1_count,
        h2_count=result.h2_count,
        word_count=result.word_count,
        image_count=result.image_count,
        internal_link_count=result.internal_link_count,
        lcp_ms=result.lcp_ms,
        dom_complete_ms=result.dom_complete_ms,
        flags=dict(result.checks),
    )


def from_page_record(page):
    fields = (page.title, page.description, page.h1_count, page.h2_count, page.word_count)
    if all(value is None for value in fields):
        return None
    return PageMetadata(
        url=page.url,
        source=MetadataSource.LOCAL,
        page_id=page.id,
        title=page.title,
        description=page.description,
        h1_count=page.h1_count,
        h2_count=page.h2_count,
        word_count=page.word_count,
    )


class MetadataResolver:
    """Resolves page keys to metadata from the one source chosen for the run.

    Page keys are positions in the source's page list, so every page counts
    toward the total even when it resolves to ``None``.
    """

    def __init__(self, source, crawl_results=(), page_records=()):
        self.source = MetadataSource(source)
        if self.source is MetadataSource.EXTERNAL:
            self._pages = list(crawl_results)
            self._convert = from_crawl_result
        else:
            self._pages = list(page_records)
            self._convert = from_page_record

    @property
    def page_count(self):
        return len(self._pages)

    def page_keys(self):
        return range(len(self._pages))

    def page_url(self, key):
        return self._pages[key].url

    def resolve(self, key):
        if key < 0 or key >= len(self._pages):
            return None
        return self._convert(self._pages[key])

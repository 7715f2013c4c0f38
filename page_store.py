import logging

from bs4 import BeautifulSoup

from errors import InvalidInput
from models import PageRecord, Site

logger = logging.getLogger(__name__)


def extract_page_metadata(content):
    """Pull the fallback metadata fields out of a page's HTML."""
    soup = BeautifulSoup(content, 'html.parser')

    title_tag = soup.find('title')
    title = title_tag.get_text(strip=True) if title_tag else ''

    description = ''
    description_tag = soup.find('meta', attrs={'name': 'description'})
    if description_tag and description_tag.get('content'):
        description = description_tag['content'].strip()

    for tag in soup.find_all(['script', 'style', 'title']):
        tag.decompose()
    visible_text = soup.get_text(separator=' ', strip=True)

    return {
        'title': title,
        'description': description,
        'h1_count': len(soup.find_all('h1')),
        'h2_count': len(soup.find_all('h2')),
        'word_count': len(visible_text.split()) if visible_text else 0,
    }


class PageStore:
    """Sites and their locally stored pages."""

    def __init__(self, session_factory):
        self.Session = session_factory

    def get_site(self, site_id):
        if isinstance(site_id, bool) or not isinstance(site_id, int) or site_id <= 0:
            raise InvalidInput(f"Site id must be a positive integer, got {site_id!r}")
        with self.Session() as session:
            site = session.get(Site, site_id)
            if site is None:
                raise InvalidInput(f"Unknown site {site_id}")
            session.expunge(site)
            return site

    def add_site(self, domain):
        with self.Session() as session:
            site = Site(domain=domain)
            session.add(site)
            session.commit()
            session.refresh(site)
            session.expunge(site)
            return site

    def list_pages(self, site_id):
        with self.Session() as session:
            pages = session.query(PageRecord).filter_by(site_id=site_id).order_by(PageRecord.id).all()
            session.expunge_all()
            return pages

    def save_page(self, site_id, url, **fields):
        """Insert or update the stored metadata for ``url``."""
        with self.Session() as session:
            try:
                page = session.query(PageRecord).filter_by(site_id=site_id, url=url).first()
                if page is None:
                    page = PageRecord(site_id=site_id, url=url)
                    session.add(page)
                for name, value in fields.items():
                    setattr(page, name, value)
                session.commit()
            except Exception as e:
                logger.error(f"Error saving page {url}: {str(e)}")
                session.rollback()
                raise
            session.refresh(page)
            session.expunge(page)
            return page

    def add_page_from_html(self, site_id, url, content):
        return self.save_page(site_id, url, **extract_page_metadata(content))

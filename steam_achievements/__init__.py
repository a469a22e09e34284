"""Steam achievement acquisition via authenticated stats page scraping."""

__version__ = "1.0.0"

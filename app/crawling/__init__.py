"""
Depth-bounded, robots-respecting website crawler for POI websites.
"""

from app.crawling.crawler import CrawledPage, CrawlResult, PageOutcome, WebCrawler

__all__ = ["CrawledPage", "CrawlResult", "PageOutcome", "WebCrawler"]

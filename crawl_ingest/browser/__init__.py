"""Playwright page fetcher and the crawl engine that drives it."""

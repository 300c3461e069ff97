"""Crawl-to-warehouse pipeline coordination."""

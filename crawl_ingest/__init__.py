"""Crawl a site with a headless browser and stream page metadata into BigQuery."""

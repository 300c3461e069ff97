"""BigQuery table schema for crawled pages."""

from __future__ import annotations

from google.cloud import bigquery

COOKIE_FIELDS = (
    bigquery.SchemaField("name", "STRING"),
    bigquery.SchemaField("value", "STRING"),
    bigquery.SchemaField("domain", "STRING"),
    bigquery.SchemaField("path", "STRING"),
    bigquery.SchemaField("expires", "TIMESTAMP"),
    bigquery.SchemaField("size", "INTEGER"),
    bigquery.SchemaField("http_only", "BOOLEAN"),
    bigquery.SchemaField("secure", "BOOLEAN"),
    bigquery.SchemaField("session", "BOOLEAN"),
    bigquery.SchemaField("same_site", "STRING"),
)

LOCAL_STORAGE_FIELDS = (
    bigquery.SchemaField("name", "STRING"),
    bigquery.SchemaField("value", "STRING"),
)

PAGE_SCHEMA = [
    bigquery.SchemaField("requested_url", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("final_url", "STRING"),
    bigquery.SchemaField("http_status", "INTEGER"),
    bigquery.SchemaField("content_type", "STRING"),
    bigquery.SchemaField("external", "BOOLEAN", mode="REQUIRED"),
    bigquery.SchemaField("previous_url", "STRING"),
    bigquery.SchemaField("document_title", "STRING"),
    bigquery.SchemaField("meta_description", "STRING"),
    bigquery.SchemaField("cookies", "RECORD", mode="REPEATED", fields=COOKIE_FIELDS),
    bigquery.SchemaField("local_storage", "RECORD", mode="REPEATED", fields=LOCAL_STORAGE_FIELDS),
    bigquery.SchemaField("crawled_at", "TIMESTAMP", mode="REQUIRED"),
]

# Rows are partitioned by ingestion day.
PARTITIONING = bigquery.TimePartitioning(type_=bigquery.TimePartitioningType.DAY)

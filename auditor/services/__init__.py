"""
Services for the audit pipeline.

- state_machine: page transitions, audit status, progress
- handlers: crawl_page / analyze_page job handlers
- orchestrator: start, delete and reconcile audits
- csv_export: CSV rendering of audit results
- sitemap_resolver, content_fetcher, content_analyzer: external APIs
- prompt_settings: editable analysis prompt
"""

"""
Auditor Django application.

This app runs sitemap audits: it queues crawl and analysis jobs for every
page, processes them with a pool of workers, and tracks each page and audit
through crawl, analysis and completion.
"""

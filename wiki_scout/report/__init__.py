# File: wiki_scout/report/__init__.py
"""wiki_scout.report: crawl report writers used by the CLI and tests."""

from .json_report import crawl_report_data, render_crawl_report

__all__ = ["crawl_report_data", "render_crawl_report"]

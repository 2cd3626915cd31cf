# wiki_scout/report/json_report.py

"""
JSON report of a crawl run.

Serializes a CrawlResult to a file; page HTML is left out.
"""
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

from wiki_scout.crawler.models import CrawlResult


def crawl_report_data(result: CrawlResult) -> Dict[str, Any]:
    """Plain-dict view of *result* without page bodies."""
    return {
        'stats': asdict(result.stats),
        'cancelled': result.cancelled,
        'pages': [
            {
                'url': r.url,
                'success': r.success,
                'cached': r.cached,
                'title': r.title,
                'depth': result.depths.get(r.url),
                'error': r.error,
            }
            for r in result.results
        ],
        'errors': [asdict(e) for e in result.errors],
        'visited': result.visited,
    }


def render_crawl_report(result: CrawlResult, output_path: Path | str, *, pretty: bool = True) -> Path:
    """
    Save *result* as JSON at *output_path*.

    :param result: CrawlResult returned by a crawl
    :param output_path: path of the JSON file
    :return: Path of the saved file

    Example:
    ```python
    from wiki_scout.report.json_report import render_crawl_report
    report_path = render_crawl_report(result, 'reports/crawl.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open('w', encoding='utf-8') as f:
        json.dump(crawl_report_data(result), f, ensure_ascii=False, indent=2 if pretty else None)

    return output

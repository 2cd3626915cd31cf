#!/usr/bin/env python3
"""
Command-line entry point for WikiScout.

Commands:
  crawl             Breadth-first crawl from seeds, caching every page
  crawl-from-cache  Crawl only links found in cached pages that are not cached yet
  analyze-cache     Count links in cached pages that still need crawling
  cache-stats       Show content cache statistics
  purge-cache       Delete every cached page
  search            Hybrid (or fulltext) search over a saved index
  config            Show the effective configuration

Common options:
  --config PATH       YAML/JSON config (built-in defaults if omitted)
  --log-level LEVEL   Logging level (DEBUG, INFO, ...)
  --log-file PATH     Log file (stdout only if omitted)
  --log-format FORMAT Logging format string

Example:
  wiki-scout --config configs/default.yaml crawl /Bosses --max-depth 1 --json reports/crawl.json
"""
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

import click

from wiki_scout import __version__
from wiki_scout.config import ScoutConfig, load_config
from wiki_scout.crawler.cache import ContentCache
from wiki_scout.crawler.url_normalizer import CATEGORY_EXCLUSION_PATTERNS, UrlNormalizer
from wiki_scout.engine import Engine, build_search_service, start_crawl
from wiki_scout.logger import init_logging
from wiki_scout.report.json_report import crawl_report_data, render_crawl_report
from wiki_scout.search.content_types import ContentType

CONTEXT_SETTINGS = dict(help_option_names=['--help'])
TYPE_CHOICES = [t.value for t in ContentType if t is not ContentType.UNKNOWN]


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='WikiScout, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Path to a YAML or JSON config file.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Logging level'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Log file (stdout only if omitted)'
)
@click.option(
    '--log-format', 'log_format',
    default='%(asctime)s %(levelname)s %(name)s %(message)s',
    show_default=True,
    help='Logging format string'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """WikiScout command group."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        cfg = load_config(config_path) if config_path else ScoutConfig()
    except Exception as e:
        print_error(f'Failed to load configuration: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


def _emit_result(result, json_output, pretty):
    if json_output:
        try:
            saved = render_crawl_report(result, json_output, pretty=pretty)
            click.echo(f'JSON report: {saved}')
        except OSError as e:
            print_error(f'Failed to save JSON report: {e}')
        return
    click.echo(json.dumps(crawl_report_data(result), ensure_ascii=False, indent=2 if pretty else None))


def _run_crawl(cfg, seeds, from_cache, max_depth, max_pages, crawl_timeout, category=None):
    # the timeout stops the crawl cooperatively, so a partial report is still written
    coro = start_crawl(cfg, seeds, from_cache=from_cache, max_depth=max_depth, max_pages=max_pages,
                       category=category, timeout=crawl_timeout)
    try:
        return asyncio.run(coro)
    except Exception as e:
        print_error(f'Crawl failed: {e}')


def _crawl_options(func):
    func = click.option('--max-depth', 'max_depth', type=click.IntRange(min=0), default=None,
                        help='Maximum link depth (overrides config)')(func)
    func = click.option('--max-pages', 'max_pages', type=click.IntRange(min=1), default=None,
                        help='Page budget (overrides config)')(func)
    func = click.option('--json', '-j', 'json_output', default=None,
                        type=click.Path(writable=True, dir_okay=False, path_type=Path),
                        help='Save the JSON report to a file')(func)
    func = click.option('--pretty', is_flag=True, help='Indent JSON output')(func)
    func = click.option('--crawl-timeout', 'crawl_timeout', type=float, default=None,
                        help='Stop the crawl after this many seconds, keeping partial results')(func)
    return func


@cli.command('crawl', context_settings=CONTEXT_SETTINGS)
@click.argument('seeds', nargs=-1)
@_crawl_options
@click.option('--category', 'category', default=None, type=click.Choice(sorted(CATEGORY_EXCLUSION_PATTERNS)),
              help='Skip links excluded from this category listing (overrides config)')
@click.pass_context
def crawl(ctx, seeds, max_depth, max_pages, json_output, pretty, crawl_timeout, category):
    """Crawl from SEEDS (or the configured seeds) and cache every page."""
    cfg = ctx.obj['config']
    if not seeds and not cfg.crawl.seeds:
        print_error('No seeds given and none configured')
    result = _run_crawl(cfg, list(seeds) or None, False, max_depth, max_pages, crawl_timeout, category)
    _emit_result(result, json_output, pretty)


@cli.command('crawl-from-cache', context_settings=CONTEXT_SETTINGS)
@_crawl_options
@click.pass_context
def crawl_from_cache(ctx, max_depth, max_pages, json_output, pretty, crawl_timeout):
    """Crawl links found in cached pages that are not cached yet."""
    cfg = ctx.obj['config']
    result = _run_crawl(cfg, None, True, max_depth, max_pages, crawl_timeout)
    _emit_result(result, json_output, pretty)


@cli.command('analyze-cache', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def analyze_cache(ctx):
    """Report how many links in cached pages still need crawling."""
    cfg = ctx.obj['config']

    async def _analyze():
        async with Engine(cfg) as engine:
            return await engine.analyze_cache()

    analysis = asyncio.run(_analyze())
    click.echo(json.dumps({
        'total_cached_pages': analysis.total_cached_pages,
        'total_links_found': analysis.total_links_found,
        'new_urls_to_discover': analysis.new_urls_to_discover,
        'urls_by_domain': dict(analysis.urls_by_domain),
    }, indent=2))


def _open_cache(cfg):
    return ContentCache(cfg.cache.cache_dir, UrlNormalizer(str(cfg.crawl.base_url)),
                        ttl_seconds=cfg.cache.ttl_seconds)


@cli.command('cache-stats', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def cache_stats(ctx):
    """Show content cache statistics."""
    click.echo(json.dumps(asdict(_open_cache(ctx.obj['config']).stats()), indent=2))


@cli.command('purge-cache', context_settings=CONTEXT_SETTINGS)
@click.confirmation_option(prompt='Delete every cached page?')
@click.pass_context
def purge_cache(ctx):
    """Delete every cached page."""
    cache = _open_cache(ctx.obj['config'])
    count = len(cache)
    cache.clear()
    click.echo(f'Purged {count} cached pages')


@cli.command('search', context_settings=CONTEXT_SETTINGS)
@click.argument('query')
@click.option('--type', '-t', 'types', multiple=True, type=click.Choice(TYPE_CHOICES),
              help='Restrict results to a content type (repeatable)')
@click.option('--limit', '-l', 'limit', type=int, default=None, help='Maximum number of results')
@click.option('--index', '-i', 'index_path', default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Index JSON file (overrides config)')
@click.option('--no-embed', is_flag=True, help='Skip the embedding model (fulltext only)')
@click.option('--no-rerank', is_flag=True, help='Keep the fused order instead of cross-encoder reranking')
@click.pass_context
def search(ctx, query, types, limit, index_path, no_embed, no_rerank):
    """Run QUERY against the document index."""
    cfg = ctx.obj['config']
    if index_path is not None:
        cfg = cfg.model_copy(update={'search': cfg.search.model_copy(update={'index_path': index_path})})
    try:
        service = build_search_service(cfg, use_embeddings=not no_embed, use_reranker=not no_rerank)
    except (OSError, ValueError) as e:
        print_error(f'Failed to open index: {e}')

    async def _search():
        await service.initialize()
        try:
            return await service.search(query, types=types or None, limit=limit)
        finally:
            await service.shutdown()

    try:
        response = asyncio.run(_search())
    except Exception as e:
        print_error(f'Search failed: {e}')
    click.echo(json.dumps({
        'mode': response.mode,
        'count': response.count,
        'timing': asdict(response.timing),
        'results': [asdict(r) for r in response.results],
    }, ensure_ascii=False, indent=2))


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as JSON."""
    cfg = ctx.obj['config']
    click.echo(cfg.model_dump_json(indent=2))


# expose these names at module level for test monkey-patching
cli.start_crawl = start_crawl
cli.build_search_service = build_search_service

if __name__ == "__main__":
    cli()

"""Ingestion CLI commands."""

import json
import time
from datetime import timedelta
from pathlib import Path

from src.ingestion import registry
from src.ingestion.adapter import SiteConfig
from src.ingestion.chapters import format_number
from src.ingestion.db import JobStore
from src.ingestion.errors import CatalogError
from src.ingestion.logger import logger as LOGGER
from src.ingestion.pipeline import IngestionPipeline


def cmd_add_site(args):
    """Register a site from a JSON config file."""
    config_path = Path(args.config)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: Could not read {config_path}: {e}")
        return 1

    if args.alternative:
        data["alternative"] = args.alternative

    try:
        config = SiteConfig.from_dict(args.site_id, data)
    except KeyError as e:
        print(f"Error: Site config is missing {e}")
        return 1

    registry.add_site(config, args.settings.data_dir)
    print(f"Added site: {args.site_id} ({config.default})")

    if config.alternative and registry.get_site(config.alternative, args.settings.data_dir) is None:
        print(f"Warning: Alternative site {config.alternative} is not registered yet, failover will abort until it is")
    return 0


def cmd_list_sites(args):
    """List all registered sites."""
    sites = registry.list_sites(args.settings.data_dir)

    if not sites:
        print("No sites registered")
        return 0

    print("Registered sites:")
    for site_id, config in sites.items():
        flags = []
        if config.is_lazy_load:
            flags.append("lazy-load")
        if config.use_browser:
            flags.append("browser")
        if config.image_proxy:
            flags.append("image-proxy")
        if config.alternative:
            flags.append(f"alternative: {config.alternative}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  - {site_id} ({config.default}){suffix}")

    return 0


def cmd_remove_site(args):
    """Remove a site from the registry."""
    if registry.remove_site(args.site_id, args.settings.data_dir):
        print(f"Removed site: {args.site_id}")
        return 0
    print(f"Site not found: {args.site_id}")
    return 1


def cmd_blacklist(args):
    """Exclude chapter numbers of a comic from scraping."""
    excluded = registry.add_to_blacklist(args.comic_id, args.numbers, args.settings.data_dir)
    print(f"Comic {args.comic_id} excludes chapters: {', '.join(format_number(n) for n in sorted(excluded))}")
    return 0


def cmd_alias(args):
    """Map a scraped title to the catalog title it should be ingested under."""
    store = JobStore(args.settings.db_path)
    try:
        store.set_alias(args.scraped_title, args.catalog_title)
    finally:
        store.close()

    print(f"{args.scraped_title} -> {args.catalog_title}")
    return 0


def cmd_jobs(args):
    """List failed jobs."""
    store = JobStore(args.settings.db_path)
    try:
        jobs = store.query() if args.all else store.query(aborted=False)
    finally:
        store.close()

    if not jobs:
        print("No failed jobs")
        return 0

    for job in jobs:
        state = "aborted" if job.aborted else "claimed" if job.on_retry else "pending"
        critical = " critical" if job.is_critical else ""
        print(f"{job.id}. [{state}{critical}] {job.comic_title or job.comic_id} "
              f"chapter {format_number(job.chapter_number)} ({job.source_site})")
        print(f"   Link: {job.chapter_link}")
        if job.error:
            print(f"   Error: {job.error}")

    return 0


def cmd_reclaim(args):
    """Release jobs left claimed by a crashed run."""
    hours = args.hours if args.hours is not None else args.settings.reclaim_after_hours
    store = JobStore(args.settings.db_path)
    try:
        released = store.reclaim_stale(timedelta(hours=hours))
    finally:
        store.close()

    print(f"Released {released} stale job(s)")
    return 0


def _run_once(pipeline, args):
    try:
        pipeline.run_pass(site_ids=args.site, keyword=args.keyword)
    except CatalogError as e:
        LOGGER.critical(f"Something went wrong while talking to the catalog, stopping: {e}")
        return 1
    return 0


def cmd_run(args):
    """Run an ingestion pass, optionally repeating it on a fixed cadence."""
    settings = args.settings
    if not settings.api_endpoint:
        print("Error: API_ENDPOINT is not set")
        return 1

    pipeline = IngestionPipeline.from_settings(settings)

    try:
        if not args.every_hours:
            return _run_once(pipeline, args)

        while True:
            status = _run_once(pipeline, args)
            if status != 0:
                return status
            LOGGER.info(f"Next pass in {args.every_hours} hour(s)")
            time.sleep(args.every_hours * 3600)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
        return 130
    finally:
        pipeline.store.close()


def setup_ingest_commands(subparsers):
    """Setup ingestion subcommands."""
    # add-site command
    add_site_parser = subparsers.add_parser("add-site", help="Register a site from a JSON config")
    add_site_parser.add_argument("site_id", help="Unique identifier for the site")
    add_site_parser.add_argument("--config", required=True, help="JSON file with the site config")
    add_site_parser.add_argument("--alternative", help="Site to fail over to when this one is broken")
    add_site_parser.set_defaults(func=cmd_add_site)

    # list-sites command
    list_sites_parser = subparsers.add_parser("list-sites", help="List registered sites")
    list_sites_parser.set_defaults(func=cmd_list_sites)

    # remove-site command
    remove_site_parser = subparsers.add_parser("remove-site", help="Remove a registered site")
    remove_site_parser.add_argument("site_id", help="Site identifier")
    remove_site_parser.set_defaults(func=cmd_remove_site)

    # blacklist command
    blacklist_parser = subparsers.add_parser("blacklist", help="Never scrape some chapters of a comic")
    blacklist_parser.add_argument("comic_id", help="Catalog comic id")
    blacklist_parser.add_argument("numbers", nargs="+", help="Chapter numbers to exclude")
    blacklist_parser.set_defaults(func=cmd_blacklist)

    # alias command
    alias_parser = subparsers.add_parser("alias", help="Ingest a scraped title under another catalog title")
    alias_parser.add_argument("scraped_title", help="Title as it appears on the source site")
    alias_parser.add_argument("catalog_title", help="Title of the comic in the catalog")
    alias_parser.set_defaults(func=cmd_alias)

    # jobs command
    jobs_parser = subparsers.add_parser("jobs", help="List failed jobs")
    jobs_parser.add_argument("--all", action="store_true", help="Include aborted jobs")
    jobs_parser.set_defaults(func=cmd_jobs)

    # reclaim command
    reclaim_parser = subparsers.add_parser("reclaim", help="Release jobs stuck in a claimed state")
    reclaim_parser.add_argument("--hours", type=float, help="Claim age threshold in hours")
    reclaim_parser.set_defaults(func=cmd_reclaim)

    # run command
    run_parser = subparsers.add_parser("run", help="Run an ingestion pass")
    run_parser.add_argument("--site", action="append", help="Site to scrape (repeatable, default: all)")
    run_parser.add_argument("--keyword", help="Search keyword instead of the default listing")
    run_parser.add_argument("--every-hours", type=float, default=None,
                            help="Repeat the pass on this cadence, e.g. 3")
    run_parser.set_defaults(func=cmd_run)

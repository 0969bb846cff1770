"""Site, taxonomy and blacklist registries with JSON persistence."""

import json
from pathlib import Path
from typing import Dict, Optional

from .adapter import SiteConfig
from .chapters import format_number, normalize_number
from .logger import logger as LOGGER


DEFAULT_DATA_DIR = Path("data")
SITES_FILE = "sites.json"
TAXONOMY_FILE = "taxonomy.json"
BLACKLIST_FILE = "blacklist.json"


def _load_json(path: Path, default):
    if not path.exists():
        return default

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        LOGGER.warning(f"Failed to load {path}: {e}")
        return default


def _save_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except OSError as e:
        LOGGER.error(f"Failed to save {path}: {e}")
        raise


def load_sites(data_dir: Path = DEFAULT_DATA_DIR) -> Dict[str, dict]:
    """Load raw site configs keyed by site id."""
    return _load_json(data_dir / SITES_FILE, {})


def save_sites(sites: Dict[str, dict], data_dir: Path = DEFAULT_DATA_DIR) -> None:
    _save_json(data_dir / SITES_FILE, sites)


def add_site(config: SiteConfig, data_dir: Path = DEFAULT_DATA_DIR) -> None:
    """Add or replace a site in the registry."""
    sites = load_sites(data_dir)
    sites[config.site_id] = config.to_dict()
    save_sites(sites, data_dir)


def remove_site(site_id: str, data_dir: Path = DEFAULT_DATA_DIR) -> bool:
    """Remove a site from the registry.

    Returns:
        True if the site was removed, False if it was not registered
    """
    sites = load_sites(data_dir)

    if site_id in sites:
        del sites[site_id]
        save_sites(sites, data_dir)
        return True

    return False


def get_site(site_id: str, data_dir: Path = DEFAULT_DATA_DIR) -> Optional[SiteConfig]:
    """Return a registered site, or None."""
    data = load_sites(data_dir).get(site_id)
    if data is None:
        return None
    return SiteConfig.from_dict(site_id, data)


def list_sites(data_dir: Path = DEFAULT_DATA_DIR) -> Dict[str, SiteConfig]:
    return {site_id: SiteConfig.from_dict(site_id, data) for site_id, data in load_sites(data_dir).items()}


def load_taxonomy(data_dir: Path = DEFAULT_DATA_DIR) -> Dict[str, dict]:
    """Load label to catalog id maps for comic types, statuses and genres."""
    taxonomy = _load_json(data_dir / TAXONOMY_FILE, {})
    return {
        "types": taxonomy.get("types", {}),
        "statuses": taxonomy.get("statuses", {}),
        "genres": taxonomy.get("genres", {}),
    }


def load_blacklist(data_dir: Path = DEFAULT_DATA_DIR) -> Dict[str, frozenset]:
    """Load excluded chapter numbers keyed by comic id."""
    raw = _load_json(data_dir / BLACKLIST_FILE, {})
    return {
        str(comic_id): frozenset(normalize_number(n) for n in numbers)
        for comic_id, numbers in raw.items()
    }


def add_to_blacklist(comic_id: str, numbers: list, data_dir: Path = DEFAULT_DATA_DIR) -> frozenset:
    """Exclude chapter numbers of a comic from every future scrape."""
    blacklist = dict(load_blacklist(data_dir))
    current = set(blacklist.get(str(comic_id), frozenset()))
    current.update(normalize_number(n) for n in numbers)
    blacklist[str(comic_id)] = frozenset(current)

    _save_json(
        data_dir / BLACKLIST_FILE,
        {key: [format_number(n) for n in sorted(value)] for key, value in blacklist.items()},
    )
    return blacklist[str(comic_id)]

"""Localized notification message catalogs and resolution."""
from dataclasses import dataclass
from functools import lru_cache
import logging
from pathlib import Path
import random
import re

import yaml

from app.config import get_settings
from app.services.exceptions import MessageResolutionError

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "es")
DEFAULT_LANGUAGE = "en"

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class ResolvedMessage:
    """Title/body pair ready to show to a user."""

    title: str
    body: str
    index: int


def load_message_catalogs(messages_dir: Path) -> dict[str, list[dict]]:
    """Load every ``*.yaml`` catalog in ``messages_dir``.

    Returns a mapping of catalog name to its list of bilingual variants.
    """
    if not messages_dir.exists():
        logger.warning(f"Message catalogs directory not found: {messages_dir}")
        return {}

    catalogs = {}
    for yaml_file in sorted(messages_dir.glob("*.yaml")):
        try:
            name, variants = _load_single_catalog(yaml_file)
        except Exception as e:
            logger.error(f"Failed to load message catalog from {yaml_file}: {e}")
            continue
        if name:
            catalogs[name] = variants

    logger.info(f"Loaded {len(catalogs)} message catalogs")
    return catalogs


def _load_single_catalog(yaml_path: Path) -> tuple[str | None, list[dict]]:
    """Load a single catalog file."""
    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    name = data.get("name") or yaml_path.stem
    variants = data.get("variants") or []
    for position, variant in enumerate(variants):
        if DEFAULT_LANGUAGE not in variant:
            raise ValueError(f"Variant {position} of {name} has no '{DEFAULT_LANGUAGE}' text")
    return name, variants


@lru_cache
def get_message_catalogs() -> dict[str, list[dict]]:
    """Catalogs from the configured messages directory, loaded once."""
    return load_message_catalogs(get_settings().messages_dir)


def normalize_language(code: str | None) -> str:
    """Map a stored language code onto a supported one, defaulting to English."""
    if not code:
        return DEFAULT_LANGUAGE
    base = code.strip().lower().replace("_", "-").split("-", 1)[0]
    return base if base in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def pick_variant(count: int, recent: list[int] | tuple[int, ...] = (), rng: random.Random | None = None) -> int:
    """Pick a variant index uniformly, avoiding recently used ones when possible."""
    if count <= 0:
        raise MessageResolutionError("Catalog has no variants")
    rng = rng or random.Random()
    used = set(recent)
    available = [i for i in range(count) if i not in used]
    return rng.choice(available or list(range(count)))


def fill_placeholders(text: str, variables: dict) -> str:
    """Substitute ``{{name}}`` placeholders, refusing to leave any behind."""
    missing = []

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = variables.get(key)
        if value is None:
            missing.append(key)
            return match.group(0)
        return str(value)

    rendered = PLACEHOLDER_PATTERN.sub(_replace, text)
    if missing:
        raise MessageResolutionError(f"Unresolved placeholders: {', '.join(sorted(set(missing)))}")
    return rendered


def resolve_message(
    variants: list[dict],
    language: str | None,
    variables: dict | None = None,
    recent: list[int] | tuple[int, ...] = (),
    rng: random.Random | None = None,
) -> ResolvedMessage:
    """Choose a variant and render it in the recipient's language."""
    index = pick_variant(len(variants), recent, rng)
    variant = variants[index]
    content = variant.get(normalize_language(language)) or variant.get(DEFAULT_LANGUAGE)
    if not content or not content.get("title") or not content.get("body"):
        raise MessageResolutionError(f"Variant {index} has no usable text")

    variables = variables or {}
    return ResolvedMessage(
        title=fill_placeholders(content["title"], variables),
        body=fill_placeholders(content["body"], variables),
        index=index,
    )


def push_recent(recent: list[int], index: int, cap: int) -> list[int]:
    """Append ``index`` and evict from the front once the list exceeds ``cap``."""
    updated = list(recent) + [index]
    if cap > 0 and len(updated) > cap:
        updated = updated[-cap:]
    return updated

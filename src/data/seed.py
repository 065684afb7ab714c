"""Data seeding utilities for the provider directory.

Loads the reference provider profiles from the bundled
``reference_providers.json`` and registers them with the
:class:`~src.services.provider_directory.ProviderDirectory`.  Designed to
run once at application startup in development and demo deployments.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import orjson
import structlog
from pydantic import ValidationError

from src.models.provider import ProviderProfile

if TYPE_CHECKING:
    from src.services.provider_directory import ProviderDirectory

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent / "providers"
_REFERENCE_PROVIDERS_PATH: Path = _DATA_DIR / "reference_providers.json"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_providers(path: Path | None = None) -> list[ProviderProfile]:
    """Load provider profiles from a JSON file.

    Invalid entries are logged and skipped; a missing file yields an
    empty list.

    Parameters
    ----------
    path:
        Optional path to the JSON file.  Defaults to the bundled
        ``reference_providers.json``.
    """
    file_path = path or _REFERENCE_PROVIDERS_PATH

    if not file_path.exists():
        logger.warning("seed.file_not_found", path=str(file_path))
        return []

    raw_entries = orjson.loads(file_path.read_bytes())

    providers: list[ProviderProfile] = []
    for raw in raw_entries:
        try:
            providers.append(ProviderProfile.model_validate(raw))
        except ValidationError:
            logger.warning(
                "seed.invalid_provider",
                provider_id=raw.get("provider_id", "unknown"),
                exc_info=True,
            )

    logger.info("seed.loaded_providers", count=len(providers), source=str(file_path))
    return providers


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


async def seed_provider_directory(
    directory: ProviderDirectory,
    *,
    path: Path | None = None,
) -> list[ProviderProfile]:
    """Register the reference providers, skipping ids already present."""
    providers = load_providers(path)
    if not providers:
        logger.warning("seed.no_providers_loaded")
        return []

    registered: list[ProviderProfile] = []
    for profile in providers:
        if await directory.get(profile.provider_id) is not None:
            continue
        registered.append(await directory.register(profile))

    logger.info("seed.complete", registered=len(registered))
    return registered

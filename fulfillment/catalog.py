"""Product catalog and poll definitions loaded from JSON files.

Both files are read into an immutable :class:`CatalogSnapshot`. Handlers
read the snapshot held by the :class:`Catalog`; ``reload()`` swaps in a
fresh one without mutating the previous snapshot.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from types import MappingProxyType

import aiofiles
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Calendar units are approximated with fixed lengths
EXPIRY_UNITS: dict[str, timedelta] = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


class Expiry(BaseModel):
    """Length of an access grant, e.g. ``{"amount": 3, "unit": "months"}``."""

    amount: int = Field(gt=0)
    unit: str

    def as_timedelta(self) -> timedelta:
        unit = self.unit.lower().rstrip("s")
        if unit not in EXPIRY_UNITS:
            raise ValueError(f"Unsupported expiry unit: {self.unit}")
        return EXPIRY_UNITS[unit] * self.amount


class CdnGrant(BaseModel):
    """Gated content access sold with a product."""

    redirect: str
    expiry: Expiry


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str | None = None  # Payment provider product id
    name: str = ""
    files: dict[str, str] | None = None  # filename -> storage key in the downloads dir
    links: list[str] | None = None
    members: bool = False
    cdn: CdnGrant | None = None
    event_on: str | None = Field(default=None, alias="eventOn")


class Poll(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "text"  # "email" answers must be addresses, "text" is length-capped
    unique: bool = False


@dataclass(frozen=True)
class CatalogSnapshot:
    """Read-only view of the products and polls at load time."""

    products: MappingProxyType[str, Product] = field(
        default_factory=lambda: MappingProxyType({})
    )
    polls: MappingProxyType[str, Poll] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, path: str) -> Product | None:
        return self.products.get(path)

    def find_by_external_id(self, product_id: str) -> tuple[str, Product] | None:
        """Find a product by its payment provider id."""
        for path, product in self.products.items():
            if product.id == product_id:
                return path, product
        return None

    def poll(self, name: str) -> Poll | None:
        return self.polls.get(name)


async def _read_json_object(path: Path) -> dict[str, object]:
    """Read a JSON object from disk, creating the file as ``{}`` if missing."""
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps({}, indent=2))
        logger.info(f"Created empty {path}")
        return {}
    async with aiofiles.open(path, encoding="utf-8") as f:
        data = json.loads(await f.read())
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


async def load_snapshot(store_file: str | Path, polls_file: str | Path) -> CatalogSnapshot:
    """Load and validate both files into a snapshot."""
    raw_products = await _read_json_object(Path(store_file))
    raw_polls = await _read_json_object(Path(polls_file))
    products = {path: Product.model_validate(value) for path, value in raw_products.items()}
    polls = {name: Poll.model_validate(value) for name, value in raw_polls.items()}
    return CatalogSnapshot(products=MappingProxyType(products), polls=MappingProxyType(polls))


class Catalog:
    """Holder for the current snapshot."""

    def __init__(
        self,
        store_file: str | Path,
        polls_file: str | Path,
        snapshot: CatalogSnapshot | None = None,
    ) -> None:
        # Empty until the first reload()
        self.store_file = Path(store_file)
        self.polls_file = Path(polls_file)
        self._snapshot = snapshot or CatalogSnapshot()

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    async def reload(self) -> CatalogSnapshot:
        """Re-read both files. The previous snapshot stays in place on error."""
        snapshot = await load_snapshot(self.store_file, self.polls_file)
        self._snapshot = snapshot
        logger.info(
            f"Catalog loaded: {len(snapshot.products)} products, {len(snapshot.polls)} polls"
        )
        return snapshot

"""Label catalog: maps model output channels to disease names."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from leafcheck.errors import ResourceError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

LABEL_SEPARATOR = ";\n"


@dataclass(frozen=True)
class LabelCatalog:
    """Ordered disease names; index i names output channel i."""

    labels: tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw: str) -> LabelCatalog:
        """Split raw text on ``;\\n``, trim each record and drop empty ones."""
        records = (record.strip() for record in raw.split(LABEL_SEPARATOR))
        return cls(labels=tuple(record for record in records if record))

    @classmethod
    def load(cls, resource: str | Path) -> LabelCatalog:
        """Read and parse a label resource.

        Raises:
            ResourceError: If the resource cannot be read.
        """
        path = Path(resource)
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ResourceError(f"Cannot read labels from {path}: {exc}") from exc

        catalog = cls.parse(raw)
        logger.info("Labels loaded: %d from %s", len(catalog), path)
        for index, label in enumerate(catalog):
            logger.debug("Label %d: %s", index, label)
        return catalog

    def __len__(self) -> int:
        return len(self.labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)

    def __getitem__(self, index: int) -> str:
        return self.labels[index]

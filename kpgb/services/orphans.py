"""
Out-of-band reconciliation between blob storage and the metadata store.

Blob writes and metadata inserts are not atomic, so two kinds of drift can
appear:
- orphan blobs: stored objects no metadata row points at (a failed or
  raced insert after a successful store)
- dangling rows: metadata rows whose blob is gone

Nothing here deletes anything; callers decide what to do with the report.
"""

from dataclasses import dataclass, field
from typing import List

import structlog

from kpgb.services.blog import BlogManager
from kpgb.storage.base import StorageBackend

logger = structlog.get_logger(__name__)

# Prefix under which post snapshots are written (see blob_path)
POSTS_PREFIX = "posts"


@dataclass
class OrphanReport:
    backend: str
    orphan_blobs: List[str] = field(default_factory=list)
    dangling_rows: List[str] = field(default_factory=list)
    supported: bool = True

    @property
    def clean(self) -> bool:
        return not self.orphan_blobs and not self.dangling_rows


async def find_orphans(blog: BlogManager, check_rows: bool = True) -> OrphanReport:
    backend = blog.storage.default_backend()
    report = OrphanReport(backend=backend.storage_type())

    if backend.storage_type() == StorageBackend.GITHUB.value:
        # Rows hold commit shas while the contents API lists and looks up
        # paths, so neither side can be matched against the other
        logger.warning("Orphan scan not supported for GitHub storage")
        report.supported = False
        return report

    known = set(await blog.metadata.list_storage_ids())

    prefix = POSTS_PREFIX if backend.storage_type() == StorageBackend.LOCAL.value else None
    for entry in await backend.list(prefix):
        if entry.id not in known:
            report.orphan_blobs.append(entry.id)

    if check_rows:
        for storage_id in sorted(known):
            if not await backend.exists(storage_id):
                report.dangling_rows.append(storage_id)

    logger.info(
        "Orphan scan finished",
        backend=report.backend,
        orphan_blobs=len(report.orphan_blobs),
        dangling_rows=len(report.dangling_rows),
    )
    return report

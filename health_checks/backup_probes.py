from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from health_checks.evaluator import evaluate_backup
from health_checks.models import Attempt, ConfigurationError, Result, timestamp, utc_now


LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_AGE = timedelta(hours=36)
DEFAULT_MIN_SIZE = 1 * 1024 * 1024
DEFAULT_REGION = "eu-west-1"

REASON_NO_BACKUP = "no backup found"
REASON_NOT_RECENT = "no recent backup"
REASON_TOO_SMALL = "backup size below minimum"


@dataclass(frozen=True)
class BackupItem:
    name: str
    created_at: datetime
    available: bool = True
    size: int | None = None


def parse_iso_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# Unparsable timestamps sort as the oldest possible backup.
UNKNOWN_CREATED_AT = datetime.min.replace(tzinfo=timezone.utc)


def _created_at(value: Any, name: str) -> datetime:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Unparsable backup timestamp item=%s value=%r error=%s", name, value, exc)
        return UNKNOWN_CREATED_AT


def latest_available(items: Iterable[BackupItem]) -> BackupItem | None:
    latest: BackupItem | None = None
    for item in items:
        if not item.available:
            continue
        if latest is None or latest.created_at < item.created_at:
            latest = item
    return latest


def inspect_backups(
    items: Iterable[BackupItem],
    *,
    now: datetime,
    min_age: timedelta = DEFAULT_MIN_AGE,
    min_size: int | None = None,
) -> str:
    """
    Return the failure reason for a backup catalog, or "" when the latest backup is fine.

    A too-small latest backup is reported over a stale one.
    """
    latest = latest_available(items)
    if latest is None:
        return REASON_NO_BACKUP

    reason = ""
    if latest.created_at < now - min_age:
        reason = REASON_NOT_RECENT
    if min_size is not None and latest.size is not None and latest.size < min_size:
        reason = REASON_TOO_SMALL
    return reason


# Catalog listers: each maps one backup family onto BackupItems. They take a
# boto3-shaped client so the caller owns credentials and region.

Lister = Callable[[], list[BackupItem]]


def bucket_lister(client: Any, *, bucket: str, prefix: str = "") -> Lister:
    def _list() -> list[BackupItem]:
        items: list[BackupItem] = []
        kwargs: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        while True:
            resp = client.list_objects_v2(**kwargs)
            for obj in resp.get("Contents") or []:
                key = str(obj.get("Key") or "")
                items.append(
                    BackupItem(
                        name=key,
                        created_at=_created_at(obj.get("LastModified"), key),
                        available=True,
                        size=int(obj.get("Size") or 0),
                    )
                )
            token = resp.get("NextContinuationToken")
            if not resp.get("IsTruncated") or not token:
                break
            kwargs["ContinuationToken"] = token
        return items

    return _list


def snapshot_lister(client: Any, *, instance: str) -> Lister:
    def _list() -> list[BackupItem]:
        resp = client.describe_db_snapshots(
            DBInstanceIdentifier=instance,
            IncludePublic=False,
            IncludeShared=False,
        )
        items: list[BackupItem] = []
        for snap in resp.get("DBSnapshots") or []:
            created = snap.get("SnapshotCreateTime")
            if created is None:
                # Snapshots still being created have no timestamp yet.
                continue
            name = str(snap.get("DBSnapshotIdentifier") or "")
            items.append(
                BackupItem(
                    name=name,
                    created_at=_created_at(created, name),
                    available=snap.get("Status") == "available",
                )
            )
        return items

    return _list


def image_lister(client: Any, *, name_prefix: str) -> Lister:
    def _list() -> list[BackupItem]:
        resp = client.describe_images(Filters=[{"Name": "name", "Values": [f"{name_prefix}*"]}])
        items: list[BackupItem] = []
        for image in resp.get("Images") or []:
            raw_date = image.get("CreationDate")
            if not raw_date:
                continue
            name = str(image.get("Name") or image.get("ImageId") or "")
            items.append(
                BackupItem(
                    name=name,
                    created_at=_created_at(raw_date, name),
                    available=image.get("State") == "available",
                )
            )
        return items

    return _list


@dataclass
class BackupChecker:
    """
    Checks that a backup catalog holds a recent (and, optionally, large enough) backup.

    Listing failures are configuration errors, not an unhealthy target.
    """

    name: str
    lister: Lister
    endpoint: str = ""
    min_age: timedelta = DEFAULT_MIN_AGE
    min_size: int | None = None

    async def check(self, *, now: datetime | None = None) -> Result:
        try:
            items = await asyncio.to_thread(self.lister)
        except ConfigurationError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"{self.name}: cannot list backups: {type(exc).__name__}: {exc}") from exc

        reason = inspect_backups(items, now=now or utc_now(), min_age=self.min_age, min_size=self.min_size)
        if reason:
            LOGGER.info("Backup check failed title=%s reason=%s items=%s", self.name, reason, len(items))
        result = Result(
            title=self.name,
            endpoint=self.endpoint or self.name,
            timestamp=timestamp(),
            attempts=(Attempt(error=reason),),
        )
        return evaluate_backup(result)

"""SQLite persistence for subscriptions, daily quotas and generated images.

The repository exposes a read-through interface: callers can ``read`` the
current :class:`QuotaState` and ``record_and_refresh`` a generated image,
which bumps the matching counter and returns a freshly re-read snapshot.
There is no standalone increment operation, so a counter can never move
without a persisted image record behind it.

Quota enforcement happens twice. The pipeline checks a snapshot before
calling the generation service (no network cost on refusal), and
``record_and_refresh`` re-checks inside a ``BEGIN IMMEDIATE`` transaction so
two concurrent requests from the same user cannot both consume the last
slot.

Daily reset: whenever a row is touched and its ``last_refresh`` falls on an
earlier UTC calendar day, both counters return to zero.
"""

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from imaginexus.core.errors import QuotaExceededError, TierDowngradeError
from imaginexus.core.models import GeneratedArtifact, QuotaState
from imaginexus.core.tiers import SPECIALTY_STYLE, Tier, check_quota, parse_tier, policy_for

logger = logging.getLogger(__name__)


class QuotaRepository(Protocol):
    """What the generation orchestrator needs from persistence."""

    def read(self, user_id: str) -> QuotaState: ...

    def record_and_refresh(self, artifact: GeneratedArtifact) -> tuple[str, QuotaState]: ...


def _utc_day(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


class SubscriptionRepository:
    """Manage subscriptions and generated-image records in SQLite.

    Args:
        db_path: Path to the SQLite database file.
        clock: Returns the current UNIX time; injectable for tests.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._initialize_db()
        logger.info(f"Initialized subscription database at {self.db_path}")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # Autocommit mode so transactions are opened explicitly with BEGIN IMMEDIATE.
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    user_id TEXT PRIMARY KEY,
                    tier TEXT NOT NULL,
                    images_generated INTEGER NOT NULL DEFAULT 0,
                    images_limit INTEGER NOT NULL,
                    ghibli_images_generated INTEGER NOT NULL DEFAULT 0,
                    ghibli_images_limit INTEGER NOT NULL,
                    last_refresh REAL NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    style TEXT NOT NULL,
                    aspect_ratio TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_images_user_created
                ON images(user_id, created_at DESC)
                """)

    # -- Row helpers (called inside an open transaction) --------------------

    def _load_row(self, conn: sqlite3.Connection, user_id: str) -> sqlite3.Row:
        """Fetch the user's row, creating a FREE subscription or applying the daily reset."""
        now = self._clock()
        row = conn.execute("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)).fetchone()

        if row is None:
            policy = policy_for(Tier.FREE)
            conn.execute(
                """
                INSERT INTO subscriptions (user_id, tier, images_generated, images_limit,
                    ghibli_images_generated, ghibli_images_limit, last_refresh)
                VALUES (?, ?, 0, ?, 0, ?, ?)
                """,
                (user_id, Tier.FREE.value, policy.images_limit, policy.ghibli_images_limit, now),
            )
            logger.info(f"Created FREE subscription for user {user_id}")
        elif _utc_day(row["last_refresh"]) != _utc_day(now):
            conn.execute(
                """
                UPDATE subscriptions
                SET images_generated = 0, ghibli_images_generated = 0, last_refresh = ?
                WHERE user_id = ?
                """,
                (now, user_id),
            )
            logger.info(f"Daily quota reset for user {user_id}")
        else:
            return row

        return conn.execute("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)).fetchone()

    @staticmethod
    def _to_state(row: sqlite3.Row) -> QuotaState:
        return QuotaState(
            user_id=row["user_id"],
            tier=row["tier"],
            images_generated=row["images_generated"],
            images_limit=row["images_limit"],
            ghibli_images_generated=row["ghibli_images_generated"],
            ghibli_images_limit=row["ghibli_images_limit"],
            last_refresh=row["last_refresh"],
        )

    @staticmethod
    def _to_artifact(row: sqlite3.Row) -> GeneratedArtifact:
        return GeneratedArtifact(
            id=row["id"],
            user_id=row["user_id"],
            image_url=row["image_url"],
            prompt=row["prompt"],
            style=row["style"],
            aspect_ratio=row["aspect_ratio"],
            created_at=row["created_at"],
        )

    # -- Public interface ---------------------------------------------------

    def read(self, user_id: str) -> QuotaState:
        """Return the user's current quota snapshot.

        A first read creates a FREE subscription; a read on a new UTC day
        resets both counters.
        """
        with self._transaction() as conn:
            return self._to_state(self._load_row(conn, user_id))

    def record_and_refresh(self, artifact: GeneratedArtifact) -> tuple[str, QuotaState]:
        """Persist a generated image and consume one quota slot atomically.

        Args:
            artifact: The generated image. Its ``id`` is ignored; a new id is
                assigned.

        Returns:
            Tuple of (new image id, re-read quota snapshot).

        Raises:
            QuotaExceededError: If the slot was consumed by a concurrent
                request after the caller's pre-flight check. Nothing is
                written in that case.
        """
        image_id = uuid.uuid4().hex
        with self._transaction() as conn:
            state = self._to_state(self._load_row(conn, artifact.user_id))
            decision = check_quota(state, artifact.style)
            if not decision.allowed:
                logger.warning(
                    f"Quota re-check refused {artifact.style} for user {artifact.user_id}: "
                    f"{decision.reason.value}"
                )
                raise QuotaExceededError(decision.reason)

            counter = (
                "ghibli_images_generated"
                if artifact.style == SPECIALTY_STYLE
                else "images_generated"
            )
            conn.execute(
                f"UPDATE subscriptions SET {counter} = {counter} + 1 WHERE user_id = ?",
                (artifact.user_id,),
            )
            conn.execute(
                """
                INSERT INTO images (id, user_id, image_url, prompt, style, aspect_ratio, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    image_id,
                    artifact.user_id,
                    artifact.image_url,
                    artifact.prompt,
                    artifact.style,
                    artifact.aspect_ratio,
                    artifact.created_at,
                ),
            )
            refreshed = conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ?", (artifact.user_id,)
            ).fetchone()

        logger.info(f"Recorded image {image_id} ({artifact.style}) for user {artifact.user_id}")
        return image_id, self._to_state(refreshed)

    def list_user_images(self, user_id: str) -> list[GeneratedArtifact]:
        """Return the user's generated images, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM images WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [self._to_artifact(row) for row in rows]

    def get_image(self, image_id: str) -> GeneratedArtifact | None:
        """Return one generated image record, or None if it doesn't exist."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM images WHERE id = ?", (image_id,)).fetchone()
        return self._to_artifact(row) if row else None

    def upgrade_tier(self, user_id: str, tier: str | Tier) -> QuotaState:
        """Move a user to ``tier`` and raise their limits to that tier's policy.

        Re-applying the current tier is allowed and leaves limits unchanged.

        Raises:
            ValueError: If ``tier`` is not a known tier name.
            TierDowngradeError: If ``tier`` is below the user's current tier.
        """
        target = parse_tier(tier)
        policy = policy_for(target)

        with self._transaction() as conn:
            row = self._load_row(conn, user_id)
            current = parse_tier(row["tier"])
            if target.rank < current.rank:
                raise TierDowngradeError(
                    f"Cannot change plan from {current.value} to {target.value}"
                )

            conn.execute(
                """
                UPDATE subscriptions
                SET tier = ?, images_limit = MAX(images_limit, ?),
                    ghibli_images_limit = MAX(ghibli_images_limit, ?)
                WHERE user_id = ?
                """,
                (target.value, policy.images_limit, policy.ghibli_images_limit, user_id),
            )
            row = conn.execute("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,)).fetchone()

        logger.info(f"User {user_id} now on {target.value} plan")
        return self._to_state(row)

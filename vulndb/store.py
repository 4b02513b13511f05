"""
vulndb/store.py -- SQLAlchemy-backed read layer for cluster vulnerability data.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in core/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. VulnStore is the repository; the _row_to_*
functions translate raw DB rows into domain dataclasses. Route handlers never
build SQL text themselves -- they get Select statements from here and hand
them to vulndb/listing.py for filtering, sorting and pagination.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = VulnStore()                               # SQLite default
    store = VulnStore("postgresql://user:pw@host/db") # PostgreSQL
    details = store.get_cve_details("CVE-2021-44228")
    stmt = store.build_exposed_clusters_query("CVE-2021-44228", account_id, None)
    store.close()
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.sql import Select

from core.config import get_settings
from core.models import CveDetails

logger = logging.getLogger("clustervuln.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_account = Table(
    "account",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("org_id", String(64), nullable=False, unique=True),
)

_cluster = Table(
    "cluster",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("uuid", String(36), nullable=False, unique=True),
    Column("account_id", Integer, ForeignKey("account.id"), nullable=False),
    Column("status", String(50), nullable=False, server_default=""),
    Column("version", String(50), nullable=False, server_default=""),
    Column("provider", String(50), nullable=False, server_default=""),
    Column("last_seen", DateTime(timezone=True)),
)

_image = Table(
    "image",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("digest", String(255), nullable=False, unique=True),
)

_cluster_image = Table(
    "cluster_image",
    metadata,
    Column("cluster_id", Integer, ForeignKey("cluster.id"), nullable=False),
    Column("image_id", Integer, ForeignKey("image.id"), nullable=False),
    PrimaryKeyConstraint("cluster_id", "image_id", name="pk_cluster_image"),
)

_cve = Table(
    "cve",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("severity", String(30), nullable=False, server_default=""),
    Column("cvss2_score", Float),
    Column("cvss3_score", Float),
    Column("public_date", DateTime(timezone=True)),
    Column("redhat_url", Text),
)

_image_cve = Table(
    "image_cve",
    metadata,
    Column("image_id", Integer, ForeignKey("image.id"), nullable=False),
    Column("cve_id", Integer, ForeignKey("cve.id"), nullable=False),
    PrimaryKeyConstraint("image_id", "cve_id", name="pk_image_cve"),
)

# ---------------------------------------------------------------------------
# Exposed-cluster listing contract
#
# Public sort keys map to column expressions, never to raw SQL text, so a
# sort parameter cannot inject anything. display_name sorts by uuid because
# the database has no display name of its own (AMS supplies it).
# ---------------------------------------------------------------------------

EXPOSED_CLUSTERS_SORTABLE = {
    "id": _cluster.c.id,
    "status": _cluster.c.status,
    "version": _cluster.c.version,
    "provider": _cluster.c.provider,
    "uuid": _cluster.c.uuid,
    "last_seen": _cluster.c.last_seen,
    "display_name": _cluster.c.uuid,
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def exposed_clusters_search(stmt: Select, value: str) -> Select:
    """Restrict an exposed-clusters statement to uuids containing value."""
    return stmt.where(_cluster.c.uuid.ilike(f"%{_escape_like(value)}%", escape="\\"))


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VulnStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so the same pooled
            # connection may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cve_details(self, cve_name: str) -> Optional[CveDetails]:
        """Fetch a CVE by name. Returns None if it is not in the database."""
        with self.engine.connect() as conn:
            row = conn.execute(_cve.select().where(_cve.c.name == cve_name)).fetchone()
        return _row_to_cve(row) if row is not None else None

    def get_account_id(self, org_id: str) -> Optional[int]:
        """Resolve an organization id to the internal account id."""
        with self.engine.connect() as conn:
            return conn.execute(select(_account.c.id).where(_account.c.org_id == org_id)).scalar()

    def build_exposed_clusters_query(
        self,
        cve_name: str,
        account_id: Optional[int],
        cluster_ids: Optional[list[str]],
    ) -> Select:
        """Return the unfiltered, unpaginated statement of clusters exposed to a CVE.

        One row per cluster that runs at least one image affected by the CVE,
        scoped to the caller's account. cluster_ids (when not None) further
        restricts the result to clusters known to AMS; an empty list matches
        nothing.
        """
        stmt = (
            select(
                _cluster.c.id,
                _cluster.c.uuid,
                _cluster.c.uuid.label("display_name"),
                _cluster.c.status,
                _cluster.c.version,
                _cluster.c.provider,
                _cluster.c.last_seen,
            )
            .select_from(
                _cluster.join(_cluster_image, _cluster.c.id == _cluster_image.c.cluster_id)
                .join(_image_cve, _cluster_image.c.image_id == _image_cve.c.image_id)
                .join(_cve, _image_cve.c.cve_id == _cve.c.id)
            )
            .where(_cve.c.name == cve_name)
            .where(_cluster.c.account_id == account_id)
            .group_by(_cluster.c.id)
        )
        if cluster_ids is not None:
            stmt = stmt.where(_cluster.c.uuid.in_(cluster_ids))
        return stmt

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes (data loading and test fixtures)
    # ------------------------------------------------------------------

    def create_account(self, org_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_account.insert().values(org_id=org_id))
            conn.commit()
            return result.inserted_primary_key[0]

    def create_cluster(
        self,
        uuid: str,
        account_id: int,
        status: str = "",
        version: str = "",
        provider: str = "",
        last_seen: Optional[datetime] = None,
    ) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _cluster.insert().values(
                    uuid=uuid,
                    account_id=account_id,
                    status=status,
                    version=version,
                    provider=provider,
                    last_seen=last_seen,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def create_image(self, digest: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_image.insert().values(digest=digest))
            conn.commit()
            return result.inserted_primary_key[0]

    def create_cve(self, cve: CveDetails) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _cve.insert().values(
                    name=cve.name,
                    description=cve.description,
                    severity=cve.severity,
                    cvss2_score=cve.cvss2_score,
                    cvss3_score=cve.cvss3_score,
                    public_date=cve.public_date,
                    redhat_url=cve.redhat_url,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def link_cluster_image(self, cluster_id: int, image_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_cluster_image.insert().values(cluster_id=cluster_id, image_id=image_id))
            conn.commit()

    def link_image_cve(self, image_id: int, cve_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_image_cve.insert().values(image_id=image_id, cve_id=cve_id))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_cve(row) -> CveDetails:
    return CveDetails(
        name=row.name,
        description=row.description or "",
        severity=row.severity or "",
        cvss2_score=row.cvss2_score,
        cvss3_score=row.cvss3_score,
        public_date=row.public_date,
        redhat_url=row.redhat_url,
    )

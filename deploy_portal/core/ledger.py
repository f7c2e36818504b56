"""SQLite ledger for clients, their deployment attempts and the audit log."""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConflictError,
    InvalidTransitionError,
)
from deploy_portal.models.audit import AuditEntry
from deploy_portal.models.client import (
    BrandingSettings,
    Client,
    ClientRecord,
    ClientStatus,
    FeatureFlags,
    LendProSettings,
    RailwayHandles,
    VisualizerSettings,
)
from deploy_portal.models.deployment import (
    ACTIVE_DEPLOYMENT_STATUSES,
    DEPLOYMENT_TRANSITIONS,
    Deployment,
    DeploymentStatus,
    DeploymentType,
)
from deploy_portal.utils.logging import get_logger

logger = get_logger("ledger")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

INTERRUPTED_MESSAGE = "Deployment interrupted by process restart"

_ACTIVE_PLACEHOLDERS = ", ".join("?" for _ in ACTIVE_DEPLOYMENT_STATUSES)
_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_DEPLOYMENT_STATUSES)

_HANDLE_COLUMNS = {
    "project_id": "railway_project_id",
    "project_url": "railway_project_url",
    "environment_id": "railway_environment_id",
    "service_id": "railway_service_id",
    "service_url": "service_url",
}


def _resolve_db_path(db_path: str | Path) -> Path:
    """Resolve database path relative to project root when not absolute."""
    path = Path(db_path)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dump_optional(model: Any) -> str | None:
    return json.dumps(model.model_dump()) if model is not None else None


class Ledger:
    """Persistent record of clients and every deployment attempt.

    Each call opens its own short-lived connection, so single statements are
    atomic and concurrent writers are serialized by SQLite itself.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = _resolve_db_path(db_path)
        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS clients (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    domain TEXT,
                    status TEXT NOT NULL DEFAULT 'inactive',
                    railway_project_id TEXT,
                    railway_project_url TEXT,
                    railway_environment_id TEXT,
                    railway_service_id TEXT,
                    service_url TEXT,
                    last_deployed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    created_by TEXT
                );

                CREATE TABLE IF NOT EXISTS client_settings (
                    client_id TEXT PRIMARY KEY
                        REFERENCES clients(id) ON DELETE CASCADE,
                    lendpro_api_url TEXT NOT NULL,
                    lendpro_username TEXT NOT NULL,
                    lendpro_password TEXT NOT NULL,
                    lendpro_store_id TEXT NOT NULL,
                    lendpro_sales_id TEXT NOT NULL,
                    lendpro_sales_name TEXT NOT NULL,
                    branding TEXT,
                    features TEXT,
                    visualizer TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS deployments (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL
                        REFERENCES clients(id) ON DELETE CASCADE,
                    status TEXT NOT NULL DEFAULT 'pending',
                    deployment_type TEXT NOT NULL DEFAULT 'update',
                    railway_deployment_id TEXT,
                    logs TEXT,
                    error_message TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    deployed_by TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_deployments_client
                ON deployments(client_id, started_at DESC);

                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    resource_type TEXT NOT NULL,
                    resource_id TEXT,
                    details TEXT,
                    created_at TEXT NOT NULL
                );
            """)
            conn.commit()

        logger.debug("ledger.initialized", db_path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory and foreign keys on."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Row conversion

    def _row_to_client(self, row: sqlite3.Row) -> Client:
        return Client(
            id=row["id"],
            name=row["name"],
            domain=row["domain"],
            status=ClientStatus(row["status"]),
            railway_project_id=row["railway_project_id"],
            railway_project_url=row["railway_project_url"],
            railway_environment_id=row["railway_environment_id"],
            railway_service_id=row["railway_service_id"],
            service_url=row["service_url"],
            last_deployed_at=_parse_dt(row["last_deployed_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            created_by=row["created_by"],
        )

    def _row_to_record(self, client_row: sqlite3.Row, settings_row: sqlite3.Row) -> ClientRecord:
        return ClientRecord(
            client=self._row_to_client(client_row),
            lendpro=LendProSettings(
                api_url=settings_row["lendpro_api_url"],
                username=settings_row["lendpro_username"],
                password_encrypted=settings_row["lendpro_password"],
                store_id=settings_row["lendpro_store_id"],
                sales_id=settings_row["lendpro_sales_id"],
                sales_name=settings_row["lendpro_sales_name"],
            ),
            branding=(
                BrandingSettings(**json.loads(settings_row["branding"]))
                if settings_row["branding"]
                else None
            ),
            features=(
                FeatureFlags(**json.loads(settings_row["features"]))
                if settings_row["features"]
                else None
            ),
            visualizer=(
                VisualizerSettings(**json.loads(settings_row["visualizer"]))
                if settings_row["visualizer"]
                else None
            ),
        )

    def _row_to_deployment(self, row: sqlite3.Row) -> Deployment:
        return Deployment(
            id=row["id"],
            client_id=row["client_id"],
            status=DeploymentStatus(row["status"]),
            deployment_type=DeploymentType(row["deployment_type"]),
            railway_deployment_id=row["railway_deployment_id"],
            logs=row["logs"],
            error_message=row["error_message"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            deployed_by=row["deployed_by"],
        )

    def _row_to_audit(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            id=row["id"],
            action=row["action"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            details=json.loads(row["details"]) if row["details"] else {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Clients

    async def create_client(
        self,
        client: Client,
        lendpro: LendProSettings,
        branding: BrandingSettings | None = None,
        features: FeatureFlags | None = None,
        visualizer: VisualizerSettings | None = None,
    ) -> ClientRecord:
        """Insert a client together with its settings."""
        now = datetime.utcnow().isoformat()
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO clients
                (id, name, domain, status, created_at, updated_at, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.id,
                    client.name,
                    client.domain,
                    client.status.value,
                    client.created_at.isoformat(),
                    client.updated_at.isoformat(),
                    client.created_by,
                ),
            )
            conn.execute(
                """
                INSERT INTO client_settings
                (client_id, lendpro_api_url, lendpro_username, lendpro_password,
                 lendpro_store_id, lendpro_sales_id, lendpro_sales_name,
                 branding, features, visualizer, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.id,
                    lendpro.api_url,
                    lendpro.username,
                    lendpro.password_encrypted,
                    lendpro.store_id,
                    lendpro.sales_id,
                    lendpro.sales_name,
                    _dump_optional(branding),
                    _dump_optional(features),
                    _dump_optional(visualizer),
                    now,
                ),
            )
            conn.commit()

        logger.info("ledger.client_created", client_id=client.id, name=client.name)
        return ClientRecord(
            client=client,
            lendpro=lendpro,
            branding=branding,
            features=features,
            visualizer=visualizer,
        )

    async def get_client(self, client_id: str) -> Client | None:
        """Get a client row by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE id = ?", (client_id,)
            ).fetchone()

        return self._row_to_client(row) if row else None

    async def get_client_with_config(self, client_id: str) -> ClientRecord | None:
        """Get a client joined with its stored settings."""
        with self._get_connection() as conn:
            client_row = conn.execute(
                "SELECT * FROM clients WHERE id = ?", (client_id,)
            ).fetchone()
            settings_row = conn.execute(
                "SELECT * FROM client_settings WHERE client_id = ?", (client_id,)
            ).fetchone()

        if not client_row or not settings_row:
            return None
        return self._row_to_record(client_row, settings_row)

    async def ping(self) -> bool:
        """Return True if the database file can be opened and queried."""
        try:
            with self._get_connection() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            logger.error("ledger.unreachable", db_path=str(self.db_path), error=str(e))
            return False
        return True

    async def list_clients(self) -> list[Client]:
        """List all clients, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM clients ORDER BY created_at DESC"
            ).fetchall()

        return [self._row_to_client(row) for row in rows]

    async def update_client(
        self, client_id: str, name: str | None = None, domain: str | None = None
    ) -> bool:
        """Rename a client or change its domain."""
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name
        if domain is not None:
            fields["domain"] = domain
        return self._update_client_columns(client_id, fields)

    async def update_client_status(
        self,
        client_id: str,
        status: ClientStatus,
        handles: RailwayHandles | None = None,
        last_deployed_at: datetime | None = None,
    ) -> bool:
        """Set a client's operational status and, optionally, its remote handles."""
        fields: dict[str, Any] = {"status": status.value}
        if handles is not None:
            for name, value in handles.model_dump(exclude_none=True).items():
                fields[_HANDLE_COLUMNS[name]] = value
        if last_deployed_at is not None:
            fields["last_deployed_at"] = last_deployed_at.isoformat()

        updated = self._update_client_columns(client_id, fields)
        logger.debug("ledger.client_status_updated", client_id=client_id, status=status.value)
        return updated

    def _update_client_columns(self, client_id: str, fields: dict[str, Any]) -> bool:
        if not fields:
            return False
        fields["updated_at"] = datetime.utcnow().isoformat()
        assignments = ", ".join(f"{column} = ?" for column in fields)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE clients SET {assignments} WHERE id = ?",
                (*fields.values(), client_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def _update_settings_columns(self, client_id: str, fields: dict[str, Any]) -> bool:
        if not fields:
            return False
        fields["updated_at"] = datetime.utcnow().isoformat()
        assignments = ", ".join(f"{column} = ?" for column in fields)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE client_settings SET {assignments} WHERE client_id = ?",
                (*fields.values(), client_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    async def update_lendpro(self, client_id: str, **changes: str) -> bool:
        """Update LendPro columns; ``password_encrypted`` must already be a token."""
        columns = {
            "api_url": "lendpro_api_url",
            "username": "lendpro_username",
            "password_encrypted": "lendpro_password",
            "store_id": "lendpro_store_id",
            "sales_id": "lendpro_sales_id",
            "sales_name": "lendpro_sales_name",
        }
        fields = {
            columns[name]: value for name, value in changes.items() if value is not None
        }
        return self._update_settings_columns(client_id, fields)

    async def update_branding(self, client_id: str, branding: BrandingSettings | None) -> bool:
        return self._update_settings_columns(client_id, {"branding": _dump_optional(branding)})

    async def update_features(self, client_id: str, features: FeatureFlags | None) -> bool:
        return self._update_settings_columns(client_id, {"features": _dump_optional(features)})

    async def update_visualizer(
        self, client_id: str, visualizer: VisualizerSettings | None
    ) -> bool:
        return self._update_settings_columns(
            client_id, {"visualizer": _dump_optional(visualizer)}
        )

    async def claim_client_for_deletion(self, client_id: str) -> Client:
        """Mark a client ``deleting`` unless a deployment holds it.

        The status change is a single conditional update, so it cannot
        interleave with :meth:`create_deployment_record`: once it succeeds no
        new attempt can start for the client. Returns the client as it was
        before the claim.

        Raises:
            ClientNotFoundError: the client does not exist.
            ConflictError: an attempt is in flight or another delete holds
                the client.
        """
        client = await self.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        if client.status == ClientStatus.DELETING:
            raise ConflictError(client_id, message=f"Client {client_id} is being deleted")

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE clients SET status = ?, updated_at = ?
                WHERE id = ? AND status = ?
                AND NOT EXISTS (
                    SELECT 1 FROM deployments
                    WHERE client_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})
                )
                """,
                (
                    ClientStatus.DELETING.value,
                    datetime.utcnow().isoformat(),
                    client_id,
                    client.status.value,
                    client_id,
                    *_ACTIVE_VALUES,
                ),
            )
            conn.commit()
            claimed = cursor.rowcount > 0

        if not claimed:
            active = await self.get_active_deployment(client_id)
            raise ConflictError(client_id, active.id if active else None)

        logger.info("ledger.client_claimed_for_deletion", client_id=client_id)
        return client

    async def delete_client_and_related(self, client_id: str) -> bool:
        """Delete a client, its settings and its deployment history."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM deployments WHERE client_id = ?", (client_id,))
            conn.execute("DELETE FROM client_settings WHERE client_id = ?", (client_id,))
            cursor = conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("ledger.client_deleted", client_id=client_id)
        return deleted

    # ------------------------------------------------------------------
    # Deployments

    async def create_deployment_record(
        self,
        client_id: str,
        deployment_type: DeploymentType,
        deployed_by: str | None = None,
    ) -> Deployment:
        """Open a new attempt in ``pending``.

        The insert only happens when the client has no attempt in a
        non-terminal state and is not being deleted, which makes it the
        per-client claim.

        Raises:
            ConflictError: another attempt is still in flight, or the client
                is being deleted.
            ClientNotFoundError: the client does not exist.
        """
        deployment = Deployment(
            client_id=client_id,
            status=DeploymentStatus.PENDING,
            deployment_type=deployment_type,
            deployed_by=deployed_by,
        )

        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    f"""
                    INSERT INTO deployments
                    (id, client_id, status, deployment_type, started_at, deployed_by)
                    SELECT ?, ?, ?, ?, ?, ?
                    WHERE NOT EXISTS (
                        SELECT 1 FROM deployments
                        WHERE client_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})
                    )
                    AND NOT EXISTS (
                        SELECT 1 FROM clients WHERE id = ? AND status = ?
                    )
                    """,
                    (
                        deployment.id,
                        client_id,
                        deployment.status.value,
                        deployment.deployment_type.value,
                        deployment.started_at.isoformat(),
                        deployed_by,
                        client_id,
                        *_ACTIVE_VALUES,
                        client_id,
                        ClientStatus.DELETING.value,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ClientNotFoundError(client_id) from e
            conn.commit()
            inserted = cursor.rowcount > 0

        if not inserted:
            active = await self.get_active_deployment(client_id)
            if active is None:
                raise ConflictError(
                    client_id, message=f"Client {client_id} is being deleted"
                )
            raise ConflictError(client_id, active.id)

        logger.info(
            "ledger.deployment_created",
            deployment_id=deployment.id,
            client_id=client_id,
            deployment_type=deployment_type.value,
        )
        return deployment

    async def update_deployment_record(
        self,
        deployment_id: str,
        status: DeploymentStatus | None = None,
        railway_deployment_id: str | None = None,
        error_message: str | None = None,
    ) -> Deployment | None:
        """Update an attempt, enforcing the deployment state machine.

        ``completed_at`` is stamped exactly when a terminal status is
        written. Returns None when the row no longer exists.

        Raises:
            InvalidTransitionError: the row is terminal or the move is not
                allowed from its current status.
        """
        current = await self.get_deployment(deployment_id)
        if current is None:
            logger.warning("ledger.deployment_missing", deployment_id=deployment_id)
            return None

        requested = status or current.status
        if current.status.is_terminal:
            raise InvalidTransitionError(deployment_id, current.status.value, requested.value)
        if requested != current.status and requested not in DEPLOYMENT_TRANSITIONS[current.status]:
            raise InvalidTransitionError(deployment_id, current.status.value, requested.value)

        fields: dict[str, Any] = {"status": requested.value}
        if railway_deployment_id is not None:
            fields["railway_deployment_id"] = railway_deployment_id
        if error_message is not None:
            fields["error_message"] = error_message
        if requested.is_terminal:
            fields["completed_at"] = datetime.utcnow().isoformat()
        assignments = ", ".join(f"{column} = ?" for column in fields)

        # Guard on the status we validated against
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE deployments SET {assignments} WHERE id = ? AND status = ?",
                (*fields.values(), deployment_id, current.status.value),
            )
            conn.commit()
            updated = cursor.rowcount > 0

        if not updated:
            latest = await self.get_deployment(deployment_id)
            if latest is None:
                return None
            raise InvalidTransitionError(deployment_id, latest.status.value, requested.value)

        logger.debug(
            "ledger.deployment_updated",
            deployment_id=deployment_id,
            status=requested.value,
        )
        return await self.get_deployment(deployment_id)

    async def append_deployment_log(self, deployment_id: str, line: str) -> None:
        """Append one progress line to an attempt's log."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE deployments
                SET logs = CASE WHEN logs IS NULL OR logs = '' THEN ? ELSE logs || char(10) || ? END
                WHERE id = ?
                """,
                (line, line, deployment_id),
            )
            conn.commit()

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM deployments WHERE id = ?", (deployment_id,)
            ).fetchone()

        return self._row_to_deployment(row) if row else None

    async def get_active_deployment(self, client_id: str) -> Deployment | None:
        """Return the client's in-flight attempt, if any."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM deployments
                WHERE client_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})
                ORDER BY started_at DESC
                LIMIT 1
                """,
                (client_id, *_ACTIVE_VALUES),
            ).fetchone()

        return self._row_to_deployment(row) if row else None

    async def list_deployments(self, client_id: str, limit: int = 10) -> list[Deployment]:
        """Deployment history for a client, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM deployments
                WHERE client_id = ?
                ORDER BY started_at DESC
                LIMIT ?
                """,
                (client_id, limit),
            ).fetchall()

        return [self._row_to_deployment(row) for row in rows]

    async def recover_interrupted_deployments(self) -> int:
        """Fail attempts left in flight by a previous process.

        Clients left ``deploying`` or ``deleting`` are marked ``failed`` so
        they can be redeployed or deleted again.

        Returns the number of deployment rows that were closed.
        """
        now = datetime.utcnow().isoformat()
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE deployments
                SET status = ?, error_message = ?, completed_at = ?
                WHERE status IN ({_ACTIVE_PLACEHOLDERS})
                """,
                (DeploymentStatus.FAILED.value, INTERRUPTED_MESSAGE, now, *_ACTIVE_VALUES),
            )
            recovered = cursor.rowcount
            conn.execute(
                "UPDATE clients SET status = ?, updated_at = ? WHERE status IN (?, ?)",
                (
                    ClientStatus.FAILED.value,
                    now,
                    ClientStatus.DEPLOYING.value,
                    ClientStatus.DELETING.value,
                ),
            )
            conn.commit()

        if recovered:
            logger.warning("ledger.deployments_recovered", count=recovered)
        return recovered

    # ------------------------------------------------------------------
    # Audit log

    async def append_audit_entry(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Record an admin or orchestrator action."""
        entry = AuditEntry(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
        )
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_log (action, resource_type, resource_id, details, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.action,
                    entry.resource_type,
                    entry.resource_id,
                    json.dumps(entry.details, default=str),
                    entry.created_at.isoformat(),
                ),
            )
            conn.commit()
            entry.id = cursor.lastrowid

        return entry

    async def list_audit_entries(self, limit: int = 100) -> list[AuditEntry]:
        """Most recent audit entries first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()

        return [self._row_to_audit(row) for row in rows]

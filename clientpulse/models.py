"""
ClientPulse - Database Models

MySQL connection pool and the MySQL-backed implementation of the client,
telemetry and incident stores. Tables are created by schema.sql
(see scripts/init_db.py).
"""

import functools
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

from mysql.connector import errors as mysql_errors
from mysql.connector import pooling

from .health.errors import ClientNotFound, IncidentNotFound, TransientStoreError
from .health.memory_store import InMemoryStore
from .health.risk import RiskTier, classify
from .health.stores import (
    ClientStore, TelemetryStore, IncidentStore,
    ClientRecord, TelemetryRecord, IncidentRecord,
    OPEN_STATUSES, PLAN_TIERS, check_client_changes, utcnow,
)

logger = logging.getLogger(__name__)

_db_pool = None
_store = None


# =============================================================================
# Connection Pool
# =============================================================================

def init_db_pool(app_config=None):
    """Create the process-wide MySQL connection pool."""
    global _db_pool

    if app_config is None:
        from .config import get_config
        app_config = get_config()

    _db_pool = pooling.MySQLConnectionPool(
        pool_name='clientpulse',
        pool_size=app_config.DB_POOL_SIZE,
        host=app_config.DB_HOST,
        port=app_config.DB_PORT,
        user=app_config.DB_USER,
        password=app_config.DB_PASSWORD,
        database=app_config.DB_NAME,
        connection_timeout=10,
        autocommit=False,
    )
    logger.info(f"MySQL pool ready ({app_config.DB_HOST}:{app_config.DB_PORT}/{app_config.DB_NAME})")
    return _db_pool


def get_db_connection():
    """Get a pooled database connection"""
    if _db_pool is None:
        init_db_pool()
    return _db_pool.get_connection()


def transient_errors(func):
    """Translate connection-level MySQL failures into TransientStoreError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (mysql_errors.OperationalError, mysql_errors.InterfaceError,
                mysql_errors.PoolError) as e:
            logger.error(f"Database unavailable in {func.__name__}: {e}")
            raise TransientStoreError(f"Database unavailable: {e}")
    return wrapper


def get_store(app_config):
    """Return the store configured for this process (one per process)."""
    global _store

    if _store is None:
        if app_config.STORE_BACKEND == 'memory':
            logger.info("Using in-memory store")
            _store = InMemoryStore()
        else:
            _store = MySQLStore()
    return _store


def reset_store():
    """Forget the process-wide store and connection pool."""
    global _store, _db_pool
    _store = None
    _db_pool = None


# =============================================================================
# MySQL Store
# =============================================================================

class MySQLStore(ClientStore, TelemetryStore, IncidentStore):
    """
    Store backed by the clients, telemetry and incidents tables.

    Args:
        db_connection_func: Function that returns a database connection.
                            Defaults to the pooled get_db_connection.
    """

    def __init__(self, db_connection_func=None):
        self._get_db_connection = db_connection_func or get_db_connection

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    @transient_errors
    def get_client(self, client_id: str) -> ClientRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("SELECT * FROM clients WHERE id = %s", (client_id,))
            row = cursor.fetchone()
            if not row:
                raise ClientNotFound(client_id)
            return self._row_to_client(row)
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def list_client_ids(self) -> List[str]:
        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT id FROM clients ORDER BY id")
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def list_clients(self, risk_status: Optional[str] = None, page: int = 1,
                     per_page: int = 10) -> Tuple[List[ClientRecord], int]:
        where = ''
        params: list = []
        if risk_status:
            where = 'WHERE risk_status = %s'
            params.append(risk_status)

        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute(f"SELECT COUNT(*) AS total FROM clients {where}", tuple(params))
            total = cursor.fetchone()['total']

            cursor.execute(f"""
                SELECT * FROM clients {where}
                ORDER BY current_health_score ASC, name ASC
                LIMIT %s OFFSET %s
            """, tuple(params + [per_page, (page - 1) * per_page]))
            return [self._row_to_client(row) for row in cursor.fetchall()], total
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def create_client(self, client: ClientRecord) -> ClientRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO clients
                (id, name, email, company, plan_tier, account_manager,
                 current_health_score, previous_health_score, risk_status,
                 contract_value, last_active, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                client.id, client.name, client.email, client.company,
                client.plan_tier, client.account_manager,
                client.current_health_score, client.previous_health_score,
                classify(client.current_health_score).value,
                client.contract_value, client.last_active, client.created_at
            ))
            conn.commit()
            return client
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def update_client_score(self, client_id: str, new_score: int,
                            risk_status: RiskTier) -> int:
        """
        Single transaction: lock the client row, capture the live score as
        previous, write score + risk together.
        """
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            conn.start_transaction()
            cursor.execute("""
                SELECT current_health_score FROM clients
                WHERE id = %s
                FOR UPDATE
            """, (client_id,))
            row = cursor.fetchone()
            if not row:
                raise ClientNotFound(client_id)

            previous = int(row['current_health_score'])
            cursor.execute("""
                UPDATE clients
                SET previous_health_score = %s,
                    current_health_score = %s,
                    risk_status = %s,
                    updated_at = %s
                WHERE id = %s
            """, (previous, new_score, risk_status.value, utcnow(), client_id))
            conn.commit()
            return previous
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def touch_last_active(self, client_id: str, when: Optional[datetime] = None) -> None:
        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "UPDATE clients SET last_active = %s WHERE id = %s",
                (when or utcnow(), client_id)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ClientNotFound(client_id)
            conn.commit()
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def count_by_risk_status(self) -> Dict[str, int]:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("""
                SELECT risk_status, COUNT(*) AS count
                FROM clients
                GROUP BY risk_status
            """)
            counts = {tier.value: 0 for tier in RiskTier}
            for row in cursor.fetchall():
                counts[row['risk_status']] = int(row['count'])
            return counts
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def update_client(self, client_id: str, changes: Dict[str, Any]) -> ClientRecord:
        check_client_changes(changes)

        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            conn.start_transaction()
            cursor.execute("SELECT * FROM clients WHERE id = %s FOR UPDATE", (client_id,))
            row = cursor.fetchone()
            if not row:
                raise ClientNotFound(client_id)

            if changes:
                # Column names come from EDITABLE_CLIENT_FIELDS only
                assignments = ', '.join(f"{name} = %s" for name in changes)
                cursor.execute(
                    f"UPDATE clients SET {assignments}, updated_at = %s WHERE id = %s",
                    tuple(changes.values()) + (utcnow(), client_id)
                )
            conn.commit()

            row.update(changes)
            return self._row_to_client(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def delete_client(self, client_id: str) -> None:
        """Telemetry and incidents go with it (ON DELETE CASCADE)."""
        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM clients WHERE id = %s", (client_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise ClientNotFound(client_id)
            conn.commit()
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def plan_tier_summary(self) -> Dict[str, Dict[str, float]]:
        return self._contract_value_summary('plan_tier', PLAN_TIERS)

    @transient_errors
    def revenue_by_risk_status(self) -> Dict[str, Dict[str, float]]:
        return self._contract_value_summary('risk_status', [tier.value for tier in RiskTier])

    def _contract_value_summary(self, column: str, keys) -> Dict[str, Dict[str, float]]:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute(f"""
                SELECT {column} AS bucket, COUNT(*) AS count,
                       COALESCE(SUM(contract_value), 0) AS revenue
                FROM clients
                GROUP BY {column}
            """)
            summary = {key: {'count': 0, 'revenue': 0.0} for key in keys}
            for row in cursor.fetchall():
                summary[row['bucket']] = {
                    'count': int(row['count']),
                    'revenue': float(row['revenue']),
                }
            return summary
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def average_health_score(self) -> float:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("SELECT AVG(current_health_score) AS average FROM clients")
            row = cursor.fetchone()
            return float(row['average']) if row and row['average'] is not None else 0.0
        finally:
            cursor.close()
            conn.close()

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    @transient_errors
    def sum_metric(self, client_id: str, metric_type: str,
                   window_start: datetime, window_end: datetime) -> float:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("""
                SELECT COALESCE(SUM(value), 0) AS total
                FROM telemetry
                WHERE client_id = %s
                  AND metric_type = %s
                  AND timestamp >= %s
                  AND timestamp < %s
            """, (client_id, metric_type, window_start, window_end))
            row = cursor.fetchone()
            return float(row['total']) if row else 0.0
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def add_telemetry(self, records: List[TelemetryRecord]) -> int:
        if not records:
            return 0

        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.executemany("""
                INSERT INTO telemetry (client_id, metric_type, value, timestamp)
                VALUES (%s, %s, %s, %s)
            """, [(r.client_id, r.metric_type, r.value, r.timestamp) for r in records])
            conn.commit()
            return len(records)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def usage_summary(self, client_id: str, window_start: datetime,
                      window_end: datetime) -> Dict[str, Dict[str, float]]:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("""
                SELECT metric_type, SUM(value) AS total, AVG(value) AS average,
                       COUNT(*) AS count
                FROM telemetry
                WHERE client_id = %s
                  AND timestamp >= %s
                  AND timestamp < %s
                GROUP BY metric_type
            """, (client_id, window_start, window_end))
            return {
                row['metric_type']: {
                    'total': float(row['total']),
                    'average': float(row['average']),
                    'count': int(row['count']),
                }
                for row in cursor.fetchall()
            }
        finally:
            cursor.close()
            conn.close()

    # -------------------------------------------------------------------------
    # Incidents
    # -------------------------------------------------------------------------

    @transient_errors
    def count_open_by_severity(self, client_id: str) -> Dict[str, int]:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("""
                SELECT severity, COUNT(*) AS count
                FROM incidents
                WHERE client_id = %s
                  AND status IN (%s, %s, %s)
                GROUP BY severity
            """, (client_id,) + OPEN_STATUSES)
            return {row['severity']: int(row['count']) for row in cursor.fetchall()}
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def create_incident(self, incident: IncidentRecord) -> IncidentRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO incidents
                (client_id, title, description, severity, status, priority, tags, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                incident.client_id, incident.title, incident.description,
                incident.severity, incident.status, incident.priority,
                json.dumps(incident.tags), incident.created_at
            ))
            incident.id = cursor.lastrowid
            conn.commit()
            return incident
        except mysql_errors.IntegrityError:
            # Foreign key on client_id
            conn.rollback()
            raise ClientNotFound(incident.client_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def resolve_open_incidents(self, client_id: str,
                               now: Optional[datetime] = None) -> int:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            conn.start_transaction()
            cursor.execute("""
                SELECT * FROM incidents
                WHERE client_id = %s
                  AND status IN (%s, %s, %s)
                FOR UPDATE
            """, (client_id,) + OPEN_STATUSES)
            incidents = [self._row_to_incident(row) for row in cursor.fetchall()]

            for incident in incidents:
                incident.resolve(now=now)
                cursor.execute("""
                    UPDATE incidents
                    SET status = %s, resolved_at = %s, time_to_resolve = %s,
                        sla_breached = %s
                    WHERE id = %s
                """, (
                    incident.status, incident.resolved_at, incident.time_to_resolve,
                    incident.sla_breached, incident.id
                ))
            conn.commit()
            return len(incidents)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def recent_incidents(self, client_id: str, limit: int = 5) -> List[IncidentRecord]:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("""
                SELECT * FROM incidents
                WHERE client_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """, (client_id, limit))
            return [self._row_to_incident(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def get_incident(self, incident_id: int) -> IncidentRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute("SELECT * FROM incidents WHERE id = %s", (incident_id,))
            row = cursor.fetchone()
            if not row:
                raise IncidentNotFound(incident_id)
            return self._row_to_incident(row)
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def list_incidents(self, status: Optional[str] = None, severity: Optional[str] = None,
                       client_id: Optional[str] = None, page: int = 1,
                       per_page: int = 20) -> Tuple[List[IncidentRecord], int]:
        conditions = []
        params: list = []
        for column, value in (('status', status), ('severity', severity), ('client_id', client_id)):
            if value:
                conditions.append(f"{column} = %s")
                params.append(value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            cursor.execute(f"SELECT COUNT(*) AS total FROM incidents {where}", tuple(params))
            total = cursor.fetchone()['total']

            cursor.execute(f"""
                SELECT * FROM incidents {where}
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
            """, tuple(params + [per_page, (page - 1) * per_page]))
            return [self._row_to_incident(row) for row in cursor.fetchall()], total
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def update_incident_status(self, incident_id: int, status: str,
                               now: Optional[datetime] = None) -> IncidentRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            conn.start_transaction()
            cursor.execute("SELECT * FROM incidents WHERE id = %s FOR UPDATE", (incident_id,))
            row = cursor.fetchone()
            if not row:
                raise IncidentNotFound(incident_id)

            incident = self._row_to_incident(row)
            incident.set_status(status, now=now)
            cursor.execute("""
                UPDATE incidents
                SET status = %s, resolved_at = %s, time_to_resolve = %s,
                    sla_breached = %s
                WHERE id = %s
            """, (
                incident.status, incident.resolved_at, incident.time_to_resolve,
                incident.sla_breached, incident.id
            ))
            conn.commit()
            return incident
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    @transient_errors
    def delete_incident(self, incident_id: int) -> IncidentRecord:
        conn = self._get_db_connection()
        cursor = conn.cursor(dictionary=True)

        try:
            conn.start_transaction()
            cursor.execute("SELECT * FROM incidents WHERE id = %s FOR UPDATE", (incident_id,))
            row = cursor.fetchone()
            if not row:
                raise IncidentNotFound(incident_id)

            cursor.execute("DELETE FROM incidents WHERE id = %s", (incident_id,))
            conn.commit()
            return self._row_to_incident(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_client(row) -> ClientRecord:
        return ClientRecord(
            id=row['id'],
            name=row['name'],
            email=row.get('email') or '',
            company=row.get('company') or '',
            plan_tier=row.get('plan_tier') or 'Bronze',
            account_manager=row.get('account_manager') or 'Unassigned',
            current_health_score=int(row['current_health_score']),
            previous_health_score=int(row['previous_health_score']),
            contract_value=float(row.get('contract_value') or 0),
            last_active=row.get('last_active'),
            created_at=row.get('created_at'),
        )

    @staticmethod
    def _row_to_incident(row) -> IncidentRecord:
        tags = row.get('tags')
        if isinstance(tags, (str, bytes)):
            try:
                tags = json.loads(tags)
            except ValueError:
                tags = []
        return IncidentRecord(
            id=row['id'],
            client_id=row['client_id'],
            title=row['title'],
            description=row.get('description') or '',
            severity=row['severity'],
            status=row['status'],
            priority=row.get('priority') or 3,
            tags=tags or [],
            created_at=row['created_at'],
            resolved_at=row.get('resolved_at'),
            time_to_resolve=row.get('time_to_resolve'),
            sla_breached=bool(row.get('sla_breached')),
        )

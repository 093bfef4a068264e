import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import DBAPIError

from crd_controller import ClusterClient, OperationHandler, ResourceTable
from crd_controller.k8s_client import secret_value

from .database import (
    DATABASE_ALREADY_EXISTS,
    DATABASE_DOES_NOT_EXIST,
    DatabaseServer,
    sql_error_number,
)
from .resource import MSSQLDB

logger = logging.getLogger(__name__)

STATUS_CREATED = "created"
STATUS_RENAMED = "renamed"
STATUS_FAILED = "failed"


class MSSQLDBOperationHandler(OperationHandler):
    """Keeps one SQL Server database in place for every MSSQLDB resource.

    ``known`` maps resource names to the last spec applied to the server. The
    watch callbacks and the reconciliation sweep both hold its lock while
    they talk to the server.
    """

    def __init__(self, server_factory: Callable[[str, str, str], DatabaseServer] = DatabaseServer.connect):
        self.known: ResourceTable[MSSQLDB] = ResourceTable()
        self.server_factory = server_factory
        self._servers: Dict[Tuple[str, str, str], DatabaseServer] = {}
        self._servers_lock = threading.Lock()

    def _server_for(self, client: ClusterClient, db: MSSQLDB) -> Optional[DatabaseServer]:
        configmap = client.read_config_map(db.spec.configmap, db.namespace)
        if not configmap.found:
            logger.error(
                "ConfigMap %s for database %s not found on namespace %s",
                db.spec.configmap,
                db.spec.dbname,
                db.namespace,
            )
            return None
        secret = client.read_secret(db.spec.credentials, db.namespace)
        if not secret.found:
            logger.error(
                "Secret %s for database %s not found on namespace %s",
                db.spec.credentials,
                db.spec.dbname,
                db.namespace,
            )
            return None

        instance = configmap.value.data["instance"]
        key = (instance, secret_value(secret.value, "userid"), secret_value(secret.value, "password"))
        with self._servers_lock:
            server = self._servers.get(key)
            if server is None:
                server = self._servers[key] = self.server_factory(*key)
        return server

    def on_added(self, client, db):
        with self.known.lock():
            self._create(client, db)

    def on_updated(self, client, db):
        logger.warning("DATABASE %s was UPDATED", db.spec.dbname)
        with self.known.lock():
            current = self.known.get(db.name)
            if current is None:
                logger.warning("Resource %s is not known yet, creating its database", db.name)
                self._create(client, db)
                return

            if current.same_spec(db):
                logger.debug("Spec of %s is unchanged", db.name)
                db.set_status(current.status or STATUS_CREATED)
                self.known.put(db)
                return
            if current.spec.dbname == db.spec.dbname:
                logger.info("Connection settings of database %s changed", db.spec.dbname)
                db.set_status(current.status or STATUS_CREATED)
                self.known.put(db)
                return

            try:
                server = self._server_for(client, db)
                if server is None:
                    return
                server.rename_database(current.spec.dbname, db.spec.dbname)
            except Exception:
                logger.exception(
                    "Failed to rename database %s to %s", current.spec.dbname, db.spec.dbname
                )
                return
            db.set_status(STATUS_RENAMED)
            self.known.put(db)
            logger.info(
                "Database successfully renamed from %s to %s", current.spec.dbname, db.spec.dbname
            )

    def on_deleted(self, client, db):
        with self.known.lock():
            logger.info("DATABASE %s will be DELETED!", db.spec.dbname)
            try:
                server = self._server_for(client, db)
                if server is None:
                    return
                server.drop_database(db.spec.dbname)
            except DBAPIError as e:
                if sql_error_number(e) != DATABASE_DOES_NOT_EXIST:
                    logger.error("Failed to drop database %s: %s", db.spec.dbname, e)
                    return
                logger.warning("DATABASE %s was already gone", db.spec.dbname)
            except Exception:
                logger.exception("Failed to drop database %s", db.spec.dbname)
                return
            self.known.remove(db.name)
            logger.info("DATABASE %s successfully deleted!", db.spec.dbname)

    def on_bookmarked(self, client, db):
        logger.warning("DATABASE %s was BOOKMARKED", db.spec.dbname)

    def on_error(self, client, db):
        logger.error("ERROR on %s", db.spec.dbname or db.name or db.kind)

    def check_current_state(self, client):
        with self.known.lock():
            for db in self.known.snapshot():
                try:
                    server = self._server_for(client, db)
                    if server is None or server.database_exists(db.spec.dbname):
                        continue
                    logger.warning("Database %s was not found!", db.spec.dbname)
                    self._create(client, db)
                except Exception:
                    logger.exception("Failed to check database %s", db.spec.dbname)

    def _create(self, client, db) -> bool:
        logger.info("DATABASE %s will be ADDED", db.spec.dbname)
        try:
            server = self._server_for(client, db)
            if server is None:
                return False
            server.create_database(db.spec.dbname)
        except DBAPIError as e:
            if sql_error_number(e) != DATABASE_ALREADY_EXISTS:
                logger.error("Failed to create database %s: %s", db.spec.dbname, e)
                db.set_status(STATUS_FAILED)
                return False
            logger.warning("DATABASE %s already exists", db.spec.dbname)
        except Exception:
            logger.exception("Failed to create database %s", db.spec.dbname)
            db.set_status(STATUS_FAILED)
            return False

        db.set_status(STATUS_CREATED)
        self.known.put(db)
        logger.info("DATABASE %s successfully created!", db.spec.dbname)
        return True

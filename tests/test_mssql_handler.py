import base64
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from sqlalchemy.exc import DBAPIError

from crd_controller import ClusterClient
from crd_controller.dispatcher import EventDispatcher
from crd_controller.resource import EventType, WatchEvent
from mssql_db.database import DATABASE_ALREADY_EXISTS, DATABASE_DOES_NOT_EXIST
from mssql_db.handler import MSSQLDBOperationHandler
from mssql_db.resource import DESCRIPTOR, MSSQLDB


class DriverError(Exception):
    pass


def sql_error(number, statement="statement"):
    message = f"[42000] [Microsoft][ODBC Driver 18 for SQL Server][SQL Server]failed ({number}) (SQLExecDirectW)"
    return DBAPIError(statement, None, DriverError("42000", message))


class FakeServer:
    def __init__(self):
        self.databases = set()
        self.calls = []
        self.fail_next = None

    def _maybe_fail(self):
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    def create_database(self, name):
        self.calls.append(("create", name))
        self._maybe_fail()
        if name in self.databases:
            raise sql_error(DATABASE_ALREADY_EXISTS)
        self.databases.add(name)

    def drop_database(self, name):
        self.calls.append(("drop", name))
        self._maybe_fail()
        if name not in self.databases:
            raise sql_error(DATABASE_DOES_NOT_EXIST)
        self.databases.remove(name)

    def rename_database(self, old, new):
        self.calls.append(("rename", old, new))
        self._maybe_fail()
        self.databases.remove(old)
        self.databases.add(new)

    def database_exists(self, name):
        self.calls.append(("exists", name))
        return name in self.databases


def b64(value):
    return base64.b64encode(value.encode()).decode()


@pytest.fixture
def core():
    core = MagicMock()
    core.read_namespaced_config_map.return_value = SimpleNamespace(data={"instance": "sql.example"})
    core.read_namespaced_secret.return_value = SimpleNamespace(
        data={"userid": b64("sa"), "password": b64("s3cret")}
    )
    return core


@pytest.fixture
def client(core):
    return ClusterClient(custom_objects=MagicMock(), core=core)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def factory(server):
    return MagicMock(return_value=server)


@pytest.fixture
def db_handler(factory):
    return MSSQLDBOperationHandler(server_factory=factory)


def make_db(name="orders-db", dbname="orders", namespace="default"):
    return MSSQLDB.from_dict(
        DESCRIPTOR,
        {
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"dbName": dbname, "configMap": "mssql-config", "credentials": "mssql-secret"},
        },
    )


def test_spec_parsing():
    db = make_db()
    assert str(db.spec) == "orders:mssql-config:mssql-secret"
    assert db.descriptor.status_annotation == "samples.k8s-cs-controller/mssqldb-status"


def test_on_added_creates_and_records(client, core, db_handler, factory, server):
    db = make_db()

    db_handler.on_added(client, db)

    assert server.databases == {"orders"}
    assert db_handler.known.get("orders-db") is db
    assert db.status == "created"
    factory.assert_called_once_with("sql.example", "sa", "s3cret")
    core.read_namespaced_config_map.assert_called_with("mssql-config", "default")
    core.read_namespaced_secret.assert_called_with("mssql-secret", "default")


def test_server_is_reused_for_same_connection(client, db_handler, factory):
    db_handler.on_added(client, make_db("a", "a"))
    db_handler.on_added(client, make_db("b", "b"))

    assert factory.call_count == 1


def test_already_exists_is_success(client, db_handler, server, caplog):
    server.databases.add("orders")

    db_handler.on_added(client, make_db())

    assert "orders-db" in db_handler.known
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_other_create_error_is_logged_not_recorded(client, db_handler, server, caplog):
    server.fail_next = sql_error(5170)
    db = make_db()

    db_handler.on_added(client, db)

    assert "orders-db" not in db_handler.known
    assert db.status == "failed"
    assert "Failed to create database orders" in caplog.text


def test_missing_config_map_is_logged(client, core, db_handler, factory, caplog):
    core.read_namespaced_config_map.side_effect = ApiException(status=404)

    db_handler.on_added(client, make_db())

    factory.assert_not_called()
    assert len(db_handler.known) == 0
    assert "ConfigMap mssql-config for database orders not found" in caplog.text


def test_missing_secret_is_logged(client, core, db_handler, factory, caplog):
    core.read_namespaced_secret.side_effect = ApiException(status=404)

    db_handler.on_added(client, make_db())

    factory.assert_not_called()
    assert "Secret mssql-secret for database orders not found" in caplog.text


def test_update_with_new_name_renames(client, db_handler, server):
    db_handler.on_added(client, make_db(dbname="orders"))
    renamed = make_db(dbname="orders_v2")

    db_handler.on_updated(client, renamed)

    assert ("rename", "orders", "orders_v2") in server.calls
    assert server.databases == {"orders_v2"}
    assert db_handler.known.get("orders-db") is renamed
    assert renamed.status == "renamed"


def test_update_with_same_name_only_refreshes(client, db_handler, server):
    db_handler.on_added(client, make_db(dbname="orders"))
    refreshed = make_db(dbname="orders")
    refreshed.spec.configmap = "other-config"

    db_handler.on_updated(client, refreshed)

    assert not [c for c in server.calls if c[0] == "rename"]
    assert db_handler.known.get("orders-db") is refreshed
    assert refreshed.status == "created"


def test_update_with_identical_spec_is_a_no_op(client, db_handler, server, factory, caplog):
    db_handler.on_added(client, make_db(dbname="orders"))
    server.calls.clear()
    resync = make_db(dbname="orders")

    with caplog.at_level(logging.INFO):
        db_handler.on_updated(client, resync)

    assert server.calls == []
    assert factory.call_count == 1
    assert db_handler.known.get("orders-db") is resync
    assert resync.status == "created"
    assert "Connection settings of database" not in caplog.text


def test_failed_rename_keeps_previous_state(client, db_handler, server, caplog):
    original = make_db(dbname="orders")
    db_handler.on_added(client, original)
    server.fail_next = sql_error(5030)

    db_handler.on_updated(client, make_db(dbname="orders_v2"))

    assert db_handler.known.get("orders-db") is original
    assert "Failed to rename database orders to orders_v2" in caplog.text


def test_update_of_unknown_resource_creates(client, db_handler, server):
    db_handler.on_updated(client, make_db())

    assert server.databases == {"orders"}
    assert "orders-db" in db_handler.known


def test_delete_drops_and_forgets(client, db_handler, server):
    db = make_db()
    db_handler.on_added(client, db)

    db_handler.on_deleted(client, db)

    assert server.databases == set()
    assert "orders-db" not in db_handler.known


def test_delete_of_missing_database_is_success(client, db_handler, server):
    db = make_db()
    db_handler.on_added(client, db)
    server.databases.clear()

    db_handler.on_deleted(client, db)

    assert "orders-db" not in db_handler.known


def test_failed_drop_keeps_resource(client, db_handler, server):
    db = make_db()
    db_handler.on_added(client, db)
    server.fail_next = sql_error(3702)

    db_handler.on_deleted(client, db)

    assert "orders-db" in db_handler.known


def test_check_current_state_recreates_missing(client, db_handler, server, caplog):
    db_handler.on_added(client, make_db("a", "alpha"))
    db_handler.on_added(client, make_db("b", "beta"))
    server.databases.discard("beta")

    db_handler.check_current_state(client)

    assert server.databases == {"alpha", "beta"}
    assert server.calls.count(("create", "beta")) == 2
    assert server.calls.count(("create", "alpha")) == 1
    assert "Database beta was not found!" in caplog.text


def test_check_current_state_continues_after_failure(client, db_handler, server, caplog):
    db_handler.on_added(client, make_db("a", "alpha"))
    db_handler.on_added(client, make_db("b", "beta"))
    server.databases.clear()

    original_exists = server.database_exists

    def flaky_exists(name):
        if name == "alpha":
            raise ConnectionError("server went away")
        return original_exists(name)

    server.database_exists = flaky_exists

    db_handler.check_current_state(client)

    assert server.databases == {"beta"}
    assert "Failed to check database alpha" in caplog.text


def test_added_then_sweep_is_idempotent(client, db_handler, server, caplog):
    dispatcher = EventDispatcher(db_handler, client, DESCRIPTOR)
    db = make_db()

    dispatcher.dispatch(WatchEvent(EventType.ADDED, db))
    dispatcher.dispatch(WatchEvent(EventType.ADDED, make_db()))
    db_handler.check_current_state(client)

    assert server.databases == {"orders"}
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_bookmark_and_error_only_log(client, db_handler, server, caplog):
    db_handler.on_bookmarked(client, make_db())
    db_handler.on_error(client, make_db())

    assert server.calls == []
    assert "DATABASE orders was BOOKMARKED" in caplog.text
    assert "ERROR on orders" in caplog.text


def test_error_from_watch_status_is_logged(client, db_handler, server, caplog):
    status = {"kind": "Status", "metadata": {}, "code": 500, "reason": "InternalError"}

    db_handler.on_error(client, MSSQLDB.from_dict(DESCRIPTOR, status))

    assert server.calls == []
    assert "ERROR on Status" in caplog.text

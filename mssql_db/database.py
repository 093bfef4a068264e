"""Thin SQLAlchemy layer over the statements the operator runs on SQL Server."""

import re
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

DATABASE_ALREADY_EXISTS = 1801
DATABASE_DOES_NOT_EXIST = 3701

# pyodbc reports the server error number in parentheses, e.g. "... (1801) (SQLExecDirectW)"
_ERROR_NUMBER = re.compile(r"\((\d{3,6})\)")


def connection_url(instance: str, user: str, password: str, driver: str = ODBC_DRIVER) -> URL:
    return URL.create(
        "mssql+pyodbc",
        username=user,
        password=password,
        host=instance,
        database="master",
        query={"driver": driver, "TrustServerCertificate": "yes"},
    )


def sql_error_number(exc: BaseException) -> Optional[int]:
    """Return the SQL Server error number carried by a driver error, if any."""
    orig = getattr(exc, "orig", None) or exc
    number = getattr(orig, "number", None)
    if isinstance(number, int):
        return number
    for arg in getattr(orig, "args", ()):
        match = _ERROR_NUMBER.search(str(arg))
        if match:
            return int(match.group(1))
    return None


def quote_name(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


class DatabaseServer:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def connect(cls, instance: str, user: str, password: str) -> "DatabaseServer":
        # CREATE/ALTER/DROP DATABASE cannot run inside a transaction.
        engine = create_engine(
            connection_url(instance, user, password),
            isolation_level="AUTOCOMMIT",
            pool_pre_ping=True,
        )
        return cls(engine)

    def _execute(self, *statements: str) -> None:
        with self.engine.connect() as conn:
            for statement in statements:
                conn.execute(text(statement))

    def create_database(self, name: str) -> None:
        self._execute(f"CREATE DATABASE {quote_name(name)}")

    def drop_database(self, name: str) -> None:
        self._execute(f"DROP DATABASE {quote_name(name)}")

    def rename_database(self, old: str, new: str) -> None:
        self._execute(
            f"ALTER DATABASE {quote_name(old)} SET SINGLE_USER WITH ROLLBACK IMMEDIATE",
            f"ALTER DATABASE {quote_name(old)} MODIFY NAME = {quote_name(new)}",
            f"ALTER DATABASE {quote_name(new)} SET MULTI_USER",
        )

    def database_exists(self, name: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                text("SELECT COUNT(*) FROM sys.databases WHERE name = :name"), {"name": name}
            ).scalar()
        return bool(count)

    def dispose(self) -> None:
        self.engine.dispose()

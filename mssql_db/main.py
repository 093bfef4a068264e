"""Entry point: ``mssql-db-controller [namespace]``."""

import sys

from crd_controller.main import run_operator

from .handler import MSSQLDBOperationHandler
from .resource import DESCRIPTOR, MSSQLDB


def main(argv=None) -> int:
    return run_operator(
        "MSSQLController",
        DESCRIPTOR,
        MSSQLDBOperationHandler,
        resource_class=MSSQLDB,
        argv=argv,
    )


if __name__ == "__main__":
    sys.exit(main())

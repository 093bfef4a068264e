from dataclasses import dataclass
from typing import Any, Dict

from crd_controller import CustomResource, ResourceDescriptor

DESCRIPTOR = ResourceDescriptor("samples.k8s-cs-controller", "v1", "mssqldbs", "mssqldb")


@dataclass
class MSSQLDBSpec:
    dbname: str = ""
    configmap: str = ""
    credentials: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MSSQLDBSpec":
        return cls(
            dbname=data.get("dbName", ""),
            configmap=data.get("configMap", ""),
            credentials=data.get("credentials", ""),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"dbName": self.dbname, "configMap": self.configmap, "credentials": self.credentials}

    def __str__(self) -> str:
        return f"{self.dbname}:{self.configmap}:{self.credentials}"


class MSSQLDB(CustomResource):
    spec_class = MSSQLDBSpec

"""Sample operator that manages SQL Server databases declared as custom resources."""

# backlify/crud — statements over orders, subscriptions, users and the callback audit log.

from backlify.crud.persistence import PersistenceGateway, SqlPersistenceGateway

__all__ = ["PersistenceGateway", "SqlPersistenceGateway"]

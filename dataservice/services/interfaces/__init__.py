"""Service interface contracts (ABCs)"""

from dataservice.services.interfaces.broker import ICacher, IServiceBroker
from dataservice.services.interfaces.storage_adapter import IStorageAdapter

__all__ = [
    'ICacher',
    'IServiceBroker',
    'IStorageAdapter',
]

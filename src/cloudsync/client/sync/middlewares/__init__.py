"""Environment middlewares.

Each middleware observes one environmental signal and publishes its
changes on a SignalStream:
- NetworkStatusMiddleware: network reachability (bool)
- AccountStatusMiddleware: remote account status (AccountStatus)
- ApplicationStateMiddleware: host foreground state (ApplicationState)
"""

from cloudsync.client.sync.middlewares.account import AccountStatusMiddleware
from cloudsync.client.sync.middlewares.application import ApplicationStateMiddleware
from cloudsync.client.sync.middlewares.base import (
    PollingMiddleware,
    SignalStream,
    SignalSubscriber,
)
from cloudsync.client.sync.middlewares.network import NetworkStatusMiddleware

__all__ = [
    "AccountStatusMiddleware",
    "ApplicationStateMiddleware",
    "NetworkStatusMiddleware",
    "PollingMiddleware",
    "SignalStream",
    "SignalSubscriber",
]

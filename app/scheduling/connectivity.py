# app/scheduling/connectivity.py

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Online/offline flag with listeners fired on every change."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity restored" if online else "Connectivity lost, queueing writes")
        for listener in list(self._listeners):
            listener(online)

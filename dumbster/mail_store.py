#!/usr/bin/env python3

import threading

from .exceptions import MessageIndexError


class MessageStore:
    """Ordered, thread-safe collection of received messages.

    Connection handlers append from the server thread while test code reads
    and waits from its own thread. A single condition guards the list.
    """

    def __init__(self):
        self._messages = []
        self._condition = threading.Condition()
        self._listeners = []

    def add_listener(self, callback):
        self._listeners.append(callback)

    def remove_listener(self, callback):
        self._listeners.remove(callback)

    def append(self, message):
        with self._condition:
            self._messages.append(message)
            self._condition.notify_all()
        for listener in list(self._listeners):
            listener(message)

    def count(self) -> int:
        with self._condition:
            return len(self._messages)

    def __len__(self):
        return self.count()

    def get(self, index: int):
        with self._condition:
            if not 0 <= index < len(self._messages):
                raise MessageIndexError(index, len(self._messages))
            return self._messages[index]

    def messages(self):
        with self._condition:
            return list(self._messages)

    def wait_for_count(self, target: int, timeout: float) -> bool:
        """Block until at least ``target`` messages are stored or ``timeout`` seconds pass.

        Returns whether the target was reached; running out of time is not an
        error, callers check ``count()`` themselves.
        """
        if timeout is None:
            raise ValueError('a timeout in seconds is required')
        timeout = max(timeout, 0)
        with self._condition:
            return self._condition.wait_for(lambda: len(self._messages) >= target, timeout)

    def clear(self):
        with self._condition:
            self._messages.clear()

#!/usr/bin/env python3


class DumbsterError(Exception):
    pass


class BindError(DumbsterError):
    def __init__(self, port, reason):
        self.port = port
        self.reason = reason
        super().__init__('Could not bind SMTP server to port {}: {}'.format(port, reason))


class ServerAlreadyRunningException(DumbsterError):
    pass


class MessageIndexError(DumbsterError, IndexError):
    def __init__(self, index, count):
        self.index = index
        self.count = count
        super().__init__('No message at index {} (store holds {})'.format(index, count))


class ConfigError(DumbsterError):
    pass

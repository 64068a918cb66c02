#!/usr/bin/env python3

import toml

from .exceptions import ConfigError
from .server import DEFAULT_HOSTNAME, DEFAULT_PORT, DEFAULT_SHUTDOWN_TIMEOUT


LOG_LEVELS = ('CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG', 'NOTSET')


class Config:
    def __init__(self,
                 hostname=DEFAULT_HOSTNAME,
                 port=DEFAULT_PORT,
                 threaded=False,
                 banner=None,
                 shutdown_timeout=DEFAULT_SHUTDOWN_TIMEOUT,
                 dump_dir=None,
                 log_level='INFO'):
        self.hostname = hostname
        self.port = port
        self.threaded = threaded
        self.banner = banner
        self.shutdown_timeout = shutdown_timeout
        self.dump_dir = dump_dir
        self.log_level = log_level
        self.validate()

    @classmethod
    def from_dict(cls, data):
        server = data.get('server', {})
        daemon = data.get('daemon', {})
        if not isinstance(server, dict) or not isinstance(daemon, dict):
            raise ConfigError('[server] and [daemon] must be tables')
        return cls(
            hostname=server.get('hostname', DEFAULT_HOSTNAME),
            port=server.get('port', DEFAULT_PORT),
            threaded=server.get('threaded', False),
            banner=server.get('banner'),
            shutdown_timeout=server.get('shutdown_timeout', DEFAULT_SHUTDOWN_TIMEOUT),
            dump_dir=daemon.get('dump_dir'),
            log_level=daemon.get('log_level', 'INFO'),
        )

    def validate(self):
        if not isinstance(self.hostname, str):
            raise ConfigError('hostname must be a string')
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise ConfigError('port must be an integer between 0 and 65535, got {!r}'.format(self.port))
        if not isinstance(self.threaded, bool):
            raise ConfigError('threaded must be true or false')
        if self.banner is not None and not isinstance(self.banner, str):
            raise ConfigError('banner must be a string')
        if isinstance(self.shutdown_timeout, bool) or not isinstance(self.shutdown_timeout, (int, float)) \
                or self.shutdown_timeout < 0:
            raise ConfigError('shutdown_timeout must be a non-negative number')
        if self.dump_dir is not None and not isinstance(self.dump_dir, str):
            raise ConfigError('dump_dir must be a string')
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError('log_level must be one of {}'.format(', '.join(LOG_LEVELS)))
        self.log_level = self.log_level.upper()

    def server_options(self):
        return {
            'hostname': self.hostname,
            'threaded': self.threaded,
            'banner': self.banner,
            'shutdown_timeout': self.shutdown_timeout,
        }


def load_config(path) -> Config:
    try:
        data = toml.load(str(path))
    except (OSError, toml.TomlDecodeError) as e:
        raise ConfigError('Unable to read configuration {}: {}'.format(path, e)) from e
    return Config.from_dict(data)

#!/usr/bin/env python3

import argparse
import asyncio
import logging
import signal
import sys
from asyncio import Queue
from functools import partial
from pathlib import Path
from uuid import uuid4

import aiofiles
from aiologger import Logger
from aiologger.levels import LogLevel

from .config import Config, load_config
from .exceptions import BindError, ConfigError, ServerAlreadyRunningException
from .server import ENCODING, SimpleSmtpServer


class MessageDumper:
    def __init__(self, path, queue, logger):
        self._task = None
        self._run = False
        self.path = Path(path)
        self.queue = queue
        self.logger = logger

    def _running(self):
        return self._run or not self.queue.empty()

    async def dequeue(self):
        while self._running():
            message = await self.queue.get()
            await self.store_message(message)

    @staticmethod
    def generate_filename():
        return '{}.eml'.format(uuid4())

    async def store_message(self, message):
        filename = self.path / self.generate_filename()
        try:
            content = str(message)
            async with aiofiles.open(filename, 'w', encoding=ENCODING, errors='surrogateescape', newline='') as f:
                await f.write(content)
        except PermissionError as e:
            self.logger.error('Permission error writing message to disk (Subject: %s, Exception: %s)',
                              message.get_first_header_value('Subject'), e)
        except OSError as e:
            self.logger.error('Error writing message to disk (Subject: %s; Exception: %s)',
                              message.get_first_header_value('Subject'), e)
        except Exception as e:
            self.logger.error('Unable to dump message (Subject: %s; Exception: %r)',
                              message.get_first_header_value('Subject'), e)
        finally:
            self.queue.task_done()

    def run(self):
        if self._task:
            raise ServerAlreadyRunningException
        self.path.mkdir(parents=True, exist_ok=True)
        self._run = True
        self._task = asyncio.get_running_loop().create_task(self.dequeue())

    async def stop(self):
        self._run = False
        await self.queue.join()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None


class Daemon:
    def __init__(self, config: Config):
        self.config = config
        self.logger = Logger.with_default_handlers(name='dumbster', level=LogLevel[config.log_level])
        self.server = SimpleSmtpServer(config.port, **config.server_options())
        self.queue = None
        self.dumper = None

    async def run(self):
        loop = asyncio.get_running_loop()
        if self.config.dump_dir:
            self.queue = Queue()
            self.dumper = MessageDumper(self.config.dump_dir, self.queue, self.logger)
            self.server.store.add_listener(partial(loop.call_soon_threadsafe, self.queue.put_nowait))
            self.dumper.run()
        await loop.run_in_executor(None, self.server.start)
        await self.logger.info('Dumbster listening on {}:{} ({})'.format(
            self.config.hostname, self.server.port, 'threaded' if self.server.threaded else 'serial'))

    async def stop(self):
        await self.logger.info('Stopping Dumbster')
        await asyncio.get_running_loop().run_in_executor(None, self.server.stop)
        if self.dumper:
            await self.dumper.stop()
        await self.logger.info('Dumbster stopped after receiving {} message(s)'.format(
            self.server.get_email_count()))

    async def shutdown(self):
        await self.logger.shutdown()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='dumbster', description='Run a dummy SMTP server.')
    parser.add_argument('-c', '--config', help='TOML configuration file')
    parser.add_argument('-p', '--port', type=int, help='port to listen on')
    parser.add_argument('--hostname', help='address to bind to')
    parser.add_argument('--threaded', action='store_true', default=None,
                        help='serve connections concurrently')
    parser.add_argument('--dump-dir', help='write every received message to this directory')
    parser.add_argument('--log-level', help='logging level (default INFO)')
    return parser.parse_args(argv)


def build_config(args) -> Config:
    config = load_config(args.config) if args.config else Config()
    overrides = {
        'port': args.port,
        'hostname': args.hostname,
        'threaded': args.threaded,
        'dump_dir': args.dump_dir,
        'log_level': args.log_level,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    config.validate()
    return config


async def serve(config):
    daemon = Daemon(config)
    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)
    try:
        try:
            await daemon.run()
        except BindError as e:
            await daemon.logger.error(str(e))
            if daemon.dumper:
                await daemon.dumper.stop()
            return 1
        await stopping.wait()
        await daemon.stop()
        return 0
    finally:
        await daemon.shutdown()


def main(argv=None):
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigError as e:
        print('dumbster: {}'.format(e), file=sys.stderr)
        return 2
    logging.basicConfig(level=config.log_level,
                        format='%(asctime)s - [%(levelname)s] - %(name)s - %(message)s')
    return asyncio.run(serve(config))


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3

import asyncio
import logging
import threading
from functools import partial

from .dispatcher import dispatcher_for
from .exceptions import BindError, ServerAlreadyRunningException
from .mail_store import MessageStore
from .session import DEFAULT_SERVER_NAME, SmtpSession


DEFAULT_PORT = 25
DEFAULT_HOSTNAME = '127.0.0.1'
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
READY_TIMEOUT = 5.0
ENCODING = 'utf-8'


async def read_line(reader):
    """Read one line including its terminator, however long it is.

    Returns an empty bytes object once the peer has closed the connection;
    an unterminated fragment before EOF counts as a closed connection.
    """
    chunks = []
    while True:
        try:
            chunks.append(await reader.readuntil(b'\n'))
            return b''.join(chunks)
        except asyncio.LimitOverrunError as e:
            chunks.append(await reader.readexactly(e.consumed))
        except asyncio.IncompleteReadError:
            return b''


class SimpleSmtpServer:
    """A dummy SMTP server that keeps every message it accepts.

    The server runs its own event loop on a background thread, so a test can
    send mail with any client and then inspect the results from its own
    thread::

        server = SimpleSmtpServer(port=0).start()
        ...
        server.anticipate_message_count_for(1, 500)
        assert server.get_message(0).get_first_header_value('Subject') == 'Hi'
        server.stop()
    """

    def __init__(self, port=DEFAULT_PORT, hostname=DEFAULT_HOSTNAME, *,
                 threaded=False,
                 banner=None,
                 server_name=DEFAULT_SERVER_NAME,
                 shutdown_timeout=DEFAULT_SHUTDOWN_TIMEOUT,
                 store=None,
                 logger=None):
        self.port = port
        self.hostname = hostname
        self.banner = banner
        self.server_name = server_name
        self.shutdown_timeout = shutdown_timeout
        self.store = store if store is not None else MessageStore()
        self.logger = logger or logging.getLogger('dumbster.server')
        self._threaded = threaded
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._thread = None
        self._loop = None
        self._server = None
        self._dispatchers = None
        self._startup_error = None
        self._stopping = False
        self._sessions = {}

    def __enter__(self):
        if self.is_stopped:
            self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()

    @property
    def threaded(self):
        return self._threaded

    def set_threaded(self, enabled: bool):
        self._threaded = bool(enabled)

    @property
    def is_stopped(self):
        return self._thread is None

    def start(self):
        with self._lock:
            if self._thread is not None:
                raise ServerAlreadyRunningException
            requested_port = self.port
            self._ready.clear()
            self._startup_error = None
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name='dumbster-smtp', daemon=True)
            self._thread.start()
            ready = self._ready.wait(READY_TIMEOUT)
            if not ready or self._startup_error is not None:
                thread, self._thread = self._thread, None
                if ready:
                    thread.join()
                error = self._startup_error or 'server did not become ready in time'
                self.logger.error('Unable to start SMTP server on %s:%s (%s)', self.hostname, requested_port, error)
                raise BindError(requested_port, error) from self._startup_error
        self.logger.info('SMTP server listening on %s:%d', self.hostname, self.port)
        return self

    def _run(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            loop.run_until_complete(self._bind())
        except Exception as e:
            self._startup_error = e
            self._ready.set()
            loop.close()
            return
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            # Connections accepted while stopping may not have run yet
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _bind(self):
        self._dispatchers = {False: dispatcher_for(False), True: dispatcher_for(True)}
        self._server = await asyncio.start_server(self._handle_client, self.hostname, self.port)
        self.port = self._server.sockets[0].getsockname()[1]

    def stop(self):
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            loop = self._loop
            try:
                asyncio.run_coroutine_threadsafe(self._shutdown(), loop).result()
            finally:
                loop.call_soon_threadsafe(loop.stop)
                thread.join()
                self._loop = None
                self._server = None
        self.logger.info('SMTP server on port %d stopped', self.port)

    async def _shutdown(self):
        self._stopping = True
        self._server.close()
        for task, session in list(self._sessions.items()):
            if session is None or session.is_idle:
                task.cancel()
        if self._sessions:
            _, pending = await asyncio.wait(list(self._sessions), timeout=self.shutdown_timeout)
            for task in pending:
                self.logger.warning('Cancelling session still running after %.1fs', self.shutdown_timeout)
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _handle_client(self, reader, writer):
        task = asyncio.current_task()
        peer = writer.get_extra_info('peername')
        self._sessions[task] = None
        self.logger.debug('Connection from %s', peer)
        try:
            if self._stopping:
                await self._reply(writer, SmtpSession(self.server_name).closing())
                return
            dispatcher = self._dispatchers[self._threaded]
            await dispatcher.dispatch(partial(self._converse, task, reader, writer))
        except ConnectionError as e:
            self.logger.debug('Connection from %s dropped: %s', peer, e)
        except asyncio.CancelledError:
            if not writer.is_closing():
                writer.write(self._encode(SmtpSession(self.server_name).closing()))
            raise
        except Exception:
            self.logger.exception('Unexpected error while serving %s', peer)
        finally:
            session = self._sessions.pop(task, None)
            if session is not None and not session.is_idle and not session.finished:
                self.logger.debug('Discarding unfinished message from %s', peer)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            self.logger.debug('Connection from %s closed', peer)

    async def _converse(self, task, reader, writer):
        session = SmtpSession(self.server_name, self.banner)
        self._sessions[task] = session
        await self._reply(writer, session.greeting())
        while not session.finished:
            if self._stopping and session.is_idle:
                await self._reply(writer, session.closing())
                return
            line = await read_line(reader)
            if not line:
                return
            response = session.feed(line.decode(ENCODING, 'surrogateescape'))
            if response.message is not None:
                self.store.append(response.message)
                self.logger.info('Accepted message from %s for %s', response.message.mail_from,
                                 ', '.join(response.message.recipients))
            if response.reply is not None:
                await self._reply(writer, response.reply)

    @staticmethod
    def _encode(reply):
        return (reply + '\r\n').encode(ENCODING)

    async def _reply(self, writer, reply):
        writer.write(self._encode(reply))
        await writer.drain()

    def get_email_count(self) -> int:
        return self.store.count()

    def get_message(self, index: int):
        return self.store.get(index)

    @property
    def received_messages(self):
        return self.store.messages()

    def anticipate_message_count_for(self, count: int, timeout_millis: int) -> bool:
        if timeout_millis is None:
            raise ValueError('timeout_millis is required')
        return self.store.wait_for_count(count, timeout_millis / 1000.0)

    def reset(self):
        self.store.clear()


def start(port=DEFAULT_PORT, **kwargs) -> SimpleSmtpServer:
    return SimpleSmtpServer(port, **kwargs).start()

#!/usr/bin/env python3

import asyncio
from asyncio import Queue
from functools import partial
import logging

import aiosmtplib
import pytest

from dumbster.daemon import MessageDumper
from dumbster.message import MailMessage
from dumbster.server import SimpleSmtpServer


def make_dumper(tmpdir):
    return MessageDumper(
        tmpdir,
        Queue(),
        logging.getLogger()
    )


def make_message():
    return MailMessage([('To', 'to@example.org'), ('From', 'from@example.org'), ('Subject', 'Subject')], 'Body')


def test_running_true_and_empty_queue(tmpdir):
    dumper = make_dumper(tmpdir)
    dumper._run = True

    assert dumper._running() is True


def test_running_false_and_item_in_queue(tmpdir):
    dumper = make_dumper(tmpdir)
    dumper._run = False
    dumper.queue.put_nowait(True)

    assert dumper._running() is True


def test_running_false_and_empty_queue(tmpdir):
    dumper = make_dumper(tmpdir)
    dumper._run = False

    assert dumper._running() is False


def test_generate_filename():
    filename = MessageDumper.generate_filename()

    assert isinstance(filename, str)
    assert filename.endswith('.eml')


@pytest.mark.asyncio
async def test_store_message(tmpdir):
    dumper = make_dumper(tmpdir)
    dumper.queue.put_nowait(make_message())
    await dumper.store_message(dumper.queue.get_nowait())

    files = tmpdir.listdir()
    assert len(files) == 1
    assert files[0].read_binary() == b'To: to@example.org\r\nFrom: from@example.org\r\nSubject: Subject\r\n\r\nBody'


@pytest.mark.asyncio
async def test_store_message_logs_write_errors(tmpdir, caplog):
    dumper = make_dumper(tmpdir.join('missing'))
    dumper.queue.put_nowait(make_message())

    with caplog.at_level(logging.ERROR):
        await dumper.store_message(dumper.queue.get_nowait())

    assert 'Error writing message to disk' in caplog.text
    assert dumper.queue.empty()


@pytest.mark.asyncio
async def test_dumps_messages_received_by_server(tmpdir):
    loop = asyncio.get_running_loop()
    dumper = make_dumper(tmpdir.join('spool'))
    dumper.run()
    server = SimpleSmtpServer(port=0)
    server.store.add_listener(partial(loop.call_soon_threadsafe, dumper.queue.put_nowait))
    server.start()
    try:
        await aiosmtplib.send('Subject: dumped\r\n\r\nhello', sender='from@example.org',
                              recipients=['to@example.org'], hostname='127.0.0.1', port=server.port)
        server.anticipate_message_count_for(1, 500)
    finally:
        await loop.run_in_executor(None, server.stop)
    await dumper.stop()

    files = tmpdir.join('spool').listdir()
    assert len(files) == 1
    assert 'Subject: dumped' in files[0].read()


class BrokenMessage:
    def get_first_header_value(self, name):
        return 'broken'

    def __str__(self):
        raise ValueError('cannot render')


@pytest.mark.asyncio
async def test_store_message_keeps_non_utf8_bytes(tmpdir):
    dumper = make_dumper(tmpdir)
    dumper.queue.put_nowait(MailMessage([('Subject', 'caf\udce9')], 'caf\udce9'))
    await dumper.store_message(dumper.queue.get_nowait())

    files = tmpdir.listdir()
    assert len(files) == 1
    assert files[0].read_binary() == b'Subject: caf\xe9\r\n\r\ncaf\xe9'


@pytest.mark.asyncio
async def test_dumper_keeps_running_after_a_failed_message(tmpdir, caplog):
    dumper = make_dumper(tmpdir.join('spool'))
    dumper.run()
    dumper.queue.put_nowait(BrokenMessage())
    dumper.queue.put_nowait(make_message())

    with caplog.at_level(logging.ERROR):
        await dumper.stop()

    assert 'Unable to dump message' in caplog.text
    assert len(tmpdir.join('spool').listdir()) == 1


@pytest.mark.asyncio
async def test_dumps_non_utf8_message_received_by_server(tmpdir):
    loop = asyncio.get_running_loop()
    dumper = make_dumper(tmpdir.join('spool'))
    dumper.run()
    server = SimpleSmtpServer(port=0)
    server.store.add_listener(partial(loop.call_soon_threadsafe, dumper.queue.put_nowait))
    server.start()
    try:
        reader, writer = await asyncio.open_connection('127.0.0.1', server.port)
        for line in (b'HELO client', b'MAIL FROM:<from@example.org>', b'RCPT TO:<to@example.org>', b'DATA',
                     b'Subject: latin\r\n\r\ncaf\xe9\r\n.', b'QUIT'):
            await reader.readline()
            writer.write(line + b'\r\n')
            await writer.drain()
        await reader.readline()
        writer.close()
        server.anticipate_message_count_for(1, 500)
    finally:
        await loop.run_in_executor(None, server.stop)
    await dumper.stop()

    files = tmpdir.join('spool').listdir()
    assert len(files) == 1
    assert files[0].read_binary().endswith(b'\r\n\r\ncaf\xe9')

#!/usr/bin/env python3

from collections import namedtuple
from enum import Enum

from .message import MessageBuilder


DEFAULT_SERVER_NAME = 'localhost'

Response = namedtuple('Response', ('reply', 'message'))


class SessionState(Enum):
    CONNECT = 1
    GREETED = 2
    MAIL = 3
    RCPT = 4
    DATA_HEADERS = 5
    DATA_BODY = 6
    QUIT = 7


IDLE_STATES = (SessionState.CONNECT, SessionState.GREETED)
DATA_STATES = (SessionState.DATA_HEADERS, SessionState.DATA_BODY)

REPLY_OK = '250 OK'
REPLY_START_DATA = '354 Start mail input; end with <CRLF>.<CRLF>'
REPLY_BYE = '221 Bye'
REPLY_UNRECOGNIZED = '500 Command not recognized'
REPLY_SYNTAX = '501 Syntax error in parameters or arguments'
REPLY_BAD_SEQUENCE = '503 Bad sequence of commands'
REPLY_CANNOT_VERIFY = '252 Cannot VRFY user, but will accept message and attempt delivery'
REPLY_HELP = '214 No help available'


def split_terminator(line):
    if line.endswith('\r\n'):
        return line[:-2], '\r\n'
    if line.endswith('\n'):
        return line[:-1], '\n'
    return line, ''


def parse_path(argument, keyword):
    """Return the address of a ``FROM:<addr>``/``TO:<addr>`` argument, or None."""
    if not argument[:len(keyword)].upper() == keyword:
        return None
    path = argument[len(keyword):].strip()
    if path.startswith('<'):
        end = path.find('>')
        if end < 0:
            return None
        return path[1:end]
    return path.split(None, 1)[0] if path else None


class SmtpSession:
    """Command interpreter for a single SMTP connection.

    The session does no I/O: ``feed`` takes one line as read from the wire
    (terminator included) and returns the reply to send, if any, plus the
    message completed by that line, if any.
    """

    def __init__(self, server_name=DEFAULT_SERVER_NAME, banner=None):
        self.server_name = server_name
        self.banner = banner or '{} Dumbster SMTP service ready'.format(server_name)
        self.state = SessionState.CONNECT
        self._mail_from = None
        self._recipients = []
        self._builder = None

    @property
    def finished(self):
        return self.state is SessionState.QUIT

    @property
    def is_idle(self):
        return self.state in IDLE_STATES

    def greeting(self):
        return '220 {}'.format(self.banner)

    def closing(self):
        return '421 {} Service closing transmission channel'.format(self.server_name)

    def feed(self, line: str) -> Response:
        text, terminator = split_terminator(line)
        if self.state in DATA_STATES:
            return self._data_line(text, terminator)
        return Response(self._command(text), None)

    def _data_line(self, text, terminator):
        if text == '.':
            message = self._builder.build()
            self._reset_transaction()
            return Response(REPLY_OK, message)
        if text.startswith('.'):
            text = text[1:]
        self._builder.add_line(text, terminator)
        if self._builder.in_body:
            self.state = SessionState.DATA_BODY
        return Response(None, None)

    def _command(self, text):
        parts = text.strip().split(None, 1)
        if not parts:
            return REPLY_UNRECOGNIZED
        verb = parts[0].upper()
        argument = parts[1] if len(parts) > 1 else ''
        handler = getattr(self, 'smtp_' + verb, None)
        if handler is None:
            return REPLY_UNRECOGNIZED
        return handler(argument)

    def _reset_transaction(self):
        self.state = SessionState.GREETED
        self._mail_from = None
        self._recipients = []
        self._builder = None

    def smtp_HELO(self, argument):
        self._reset_transaction()
        return '250 {}'.format(self.server_name)

    smtp_EHLO = smtp_HELO

    def smtp_MAIL(self, argument):
        if self.state is not SessionState.GREETED:
            return REPLY_BAD_SEQUENCE
        address = parse_path(argument, 'FROM:')
        if address is None:
            return REPLY_SYNTAX
        self._mail_from = address
        self.state = SessionState.MAIL
        return REPLY_OK

    def smtp_RCPT(self, argument):
        if self.state not in (SessionState.MAIL, SessionState.RCPT):
            return REPLY_BAD_SEQUENCE
        address = parse_path(argument, 'TO:')
        if address is None:
            return REPLY_SYNTAX
        self._recipients.append(address)
        self.state = SessionState.RCPT
        return REPLY_OK

    def smtp_DATA(self, argument):
        if self.state is not SessionState.RCPT:
            return REPLY_BAD_SEQUENCE
        self._builder = MessageBuilder(self._mail_from, self._recipients)
        self.state = SessionState.DATA_HEADERS
        return REPLY_START_DATA

    def smtp_RSET(self, argument):
        if self.state is not SessionState.CONNECT:
            self._reset_transaction()
        return REPLY_OK

    def smtp_NOOP(self, argument):
        return REPLY_OK

    def smtp_VRFY(self, argument):
        return REPLY_CANNOT_VERIFY

    smtp_EXPN = smtp_VRFY

    def smtp_HELP(self, argument):
        return REPLY_HELP

    def smtp_QUIT(self, argument):
        self._reset_transaction()
        self.state = SessionState.QUIT
        return REPLY_BYE

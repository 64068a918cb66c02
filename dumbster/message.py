#!/usr/bin/env python3

import re


HEADER_LINE = re.compile(r'^([!-9;-~]+):(.*)$')
FOLDING_WHITESPACE = (' ', '\t')


class MailMessage:
    """A message accepted by the server.

    Headers keep their first-seen order and are looked up case-insensitively;
    a name may carry several values. The body is the data after the header
    block, with the line terminators that were used on the wire.
    """

    __slots__ = ('_headers', '_body', '_mail_from', '_recipients', '_linesep')

    def __init__(self, headers=(), body='', mail_from=None, recipients=(), linesep='\r\n'):
        grouped = {}
        for name, value in headers:
            grouped.setdefault(name.lower(), (name, []))[1].append(value)
        self._headers = {key: (name, tuple(values)) for key, (name, values) in grouped.items()}
        self._body = body
        self._mail_from = mail_from
        self._recipients = tuple(recipients)
        self._linesep = linesep

    @property
    def body(self) -> str:
        return self._body

    @property
    def mail_from(self):
        return self._mail_from

    @property
    def recipients(self):
        return self._recipients

    @property
    def header_names(self):
        return [name for name, _ in self._headers.values()]

    @property
    def headers(self):
        return {name: list(values) for name, values in self._headers.values()}

    def get_body(self) -> str:
        return self._body

    def get_header_values(self, name: str):
        _, values = self._headers.get(name.lower(), (name, ()))
        return list(values)

    def get_first_header_value(self, name: str):
        _, values = self._headers.get(name.lower(), (name, ()))
        return values[0] if values else None

    def __str__(self):
        lines = ['{}: {}'.format(name, value)
                 for name, values in self._headers.values()
                 for value in values]
        return ''.join(line + self._linesep for line in lines) + self._linesep + self._body

    def __repr__(self):
        return '<MailMessage from={!r} to={!r} subject={!r}>'.format(
            self._mail_from, list(self._recipients), self.get_first_header_value('Subject'))


class MessageBuilder:
    """Collects the lines of one DATA phase into a MailMessage.

    Lines arrive with dot-stuffing already removed and the terminator split
    off. Header lines are read until the first blank line; everything after it
    is body.
    """

    def __init__(self, mail_from=None, recipients=()):
        self.mail_from = mail_from
        self.recipients = list(recipients)
        self._headers = []
        self._body = []
        self._pending_terminator = None
        self._linesep = None
        self._in_body = False

    @property
    def in_body(self):
        return self._in_body

    def add_line(self, text: str, terminator: str = '\r\n'):
        if self._linesep is None and terminator:
            self._linesep = terminator
        if not self._in_body:
            if text == '':
                self._in_body = True
                return
            if text.startswith(FOLDING_WHITESPACE) and self._headers:
                self._headers[-1][1] += text.rstrip()
                return
            match = HEADER_LINE.match(text)
            if match:
                self._headers.append([match.group(1), match.group(2).strip()])
                return
            # Not a header: the sender skipped the header block
            self._in_body = True
        self._append_body(text, terminator)

    def _append_body(self, text, terminator):
        # The terminator of a final non-blank line belongs to <CRLF>.<CRLF>
        if self._pending_terminator is not None:
            self._body.append(self._pending_terminator)
            self._pending_terminator = None
        if text == '':
            self._body.append(terminator)
        else:
            self._body.append(text)
            self._pending_terminator = terminator

    def build(self) -> MailMessage:
        return MailMessage(
            headers=[(name, value) for name, value in self._headers],
            body=''.join(self._body),
            mail_from=self.mail_from,
            recipients=self.recipients,
            linesep=self._linesep or '\r\n',
        )

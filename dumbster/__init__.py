from .exceptions import (BindError, ConfigError, DumbsterError, MessageIndexError,
                         ServerAlreadyRunningException)
from .mail_store import MessageStore
from .message import MailMessage, MessageBuilder
from .server import SimpleSmtpServer, start
from .session import SessionState, SmtpSession


__all__ = ['BindError', 'ConfigError', 'DumbsterError', 'MessageIndexError', 'ServerAlreadyRunningException',
           'MessageStore', 'MailMessage', 'MessageBuilder', 'SimpleSmtpServer', 'start', 'SessionState',
           'SmtpSession']

"""
------------
babylog.comm
------------

babylog communication module.

Defines the HTTP server on which the babylog API and the web client are served.

The server is built on top of :class:`http.server.ThreadingHTTPServer`: each
request is handled in its own thread, so the actions registered with the server
must be thread-safe.

There are three main interfaces:

* ``Server`` listens for HTTP requests and dispatches them to the registered actions
  by request path and method. Requests to unregistered paths are served from the
  public (static files) directory.
* ``Request`` is what an action receives: method, path, query parameters and body.
* ``Response`` is what an action returns. Actions may also raise :class:`HTTPError`
  to abort with an error status.
"""

import json
import mimetypes
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from logging import getLogger
from os.path import isdir, isfile, join as join_paths, realpath
from threading import Thread
from urllib.parse import parse_qs, unquote, urlparse
import os


log = getLogger(__name__)


class HTTPError(Exception):
    """Aborts the handling of a request with an error response.

    :param status: ``int``, the HTTP status code.
    :param message: ``str``, the error message sent to the client.
    """
    def __init__(self, status, message):
        super(HTTPError, self).__init__(message)
        self.status = status
        self.message = message


class BadRequest(HTTPError):
    def __init__(self, message='Bad request'):
        super(BadRequest, self).__init__(HTTPStatus.BAD_REQUEST, message)


class NotFound(HTTPError):
    def __init__(self, message='Not found'):
        super(NotFound, self).__init__(HTTPStatus.NOT_FOUND, message)


class Request:
    """An incoming HTTP request.

    :param method: ``str``, the HTTP method (``GET``, ``POST`` etc).
    :param path: ``str``, the request path, without the query string.
    :param query: ``dict``, the query parameters as parsed by :func:`urllib.parse.parse_qs`.
    :param body: ``bytes``, the request body.
    :param headers: the request headers.
    """
    def __init__(self, method, path, query=None, body=b'', headers=None):
        self.method = method
        self.path = path
        self.query = query or {}
        self.body = body
        self.headers = headers or {}

    def param(self, name, default=None):
        """Returns the first value of the query parameter ``name``, or ``default``.
        """
        values = self.query.get(name)
        if values:
            return values[0]
        return default

    def json(self):
        """Decodes the request body as JSON.

        Raises :class:`BadRequest` if the body is not valid UTF-8 encoded JSON.
        """
        try:
            return json.loads(self.body.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            log.debug('Invalid request body: %s', e)
            raise BadRequest('Invalid request body')


class Response:
    """An HTTP response.

    :param status: ``int``, the HTTP status code.
    :param body: ``bytes``, the response body.
    :param content_type: ``str``, the value of the ``Content-Type`` header.
    :param headers: ``dict``, additional headers.
    """
    def __init__(self, status=HTTPStatus.OK, body=b'', content_type='application/json', headers=None):
        self.status = status
        self.body = body
        self.content_type = content_type
        self.headers = headers or {}

    @staticmethod
    def json(payload, status=HTTPStatus.OK):
        """Creates a JSON response from a JSON-serializable ``payload``.
        """
        return Response(status=status, body=json.dumps(payload).encode('utf-8'))

    @staticmethod
    def error(status, message, headers=None):
        """Creates a JSON error response: ``{"error": message}``.
        """
        response = Response.json({'error': message}, status=status)
        response.headers.update(headers or {})
        return response


class _HTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler_class, app):
        self.app = app
        super(_HTTPServer, self).__init__(address, handler_class)


class _RequestHandler(BaseHTTPRequestHandler):

    def log_message(self, format, *args):
        log.debug('[%s] %s', self.address_string(), format % args)

    def _dispatch(self):
        app = self.server.app
        url = urlparse(self.path)
        actions = app.actions.get(url.path)
        if actions is None:
            response = self._static(app, url.path)
        else:
            action = actions.get(self.command)
            if action is None:
                response = Response.error(HTTPStatus.METHOD_NOT_ALLOWED, 'Method not allowed',
                                          headers={'Allow': ', '.join(sorted(actions))})
            else:
                try:
                    body = self._read_body()
                except ValueError:
                    response = Response.error(HTTPStatus.BAD_REQUEST, 'Invalid Content-Length')
                else:
                    request = Request(method=self.command,
                                      path=url.path,
                                      query=parse_qs(url.query),
                                      body=body,
                                      headers=self.headers)
                    response = app.process(action, request)
        self._send(response)

    do_GET = _dispatch
    do_HEAD = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_DELETE = _dispatch
    do_PATCH = _dispatch
    do_OPTIONS = _dispatch

    def _read_body(self):
        length = int(self.headers.get('Content-Length') or 0)
        if length <= 0:
            return b''
        return self.rfile.read(length)

    def _static(self, app, path):
        if self.command not in ('GET', 'HEAD'):
            return Response.error(HTTPStatus.METHOD_NOT_ALLOWED, 'Method not allowed',
                                  headers={'Allow': 'GET, HEAD'})
        file_path = app.resolve_static(path)
        if file_path is None:
            return Response.error(HTTPStatus.NOT_FOUND, 'Not found')
        content_type, _ = mimetypes.guess_type(file_path)
        try:
            with open(file_path, 'rb') as static_file:
                body = static_file.read()
        except OSError as e:
            log.warning('Failed to read static file %s: %s', file_path, e)
            return Response.error(HTTPStatus.NOT_FOUND, 'Not found')
        return Response(body=body, content_type=content_type or 'application/octet-stream')

    def _send(self, response):
        self.send_response(response.status)
        self.send_header('Content-Type', response.content_type)
        self.send_header('Content-Length', str(len(response.body)))
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        if self.command != 'HEAD':
            self.wfile.write(response.body)


class Server:
    """Listens for HTTP requests and dispatches them to the registered actions.

    Actions are registered per request path and HTTP method (see :meth:`Server.on_action`).
    A request to a registered path with a method that has no action gets a
    ``405 Method Not Allowed`` response. ``GET`` requests to any other path are
    served from ``public_dir``.

    Instances of this class are thread-safe.

    :param host: ``str``, the hostname to bind to when listening for incoming
        connections.
    :param port: ``int``, the port to listen on. ``0`` picks a free port, see
        :attr:`Server.port` after :meth:`Server.start`.
    :param public_dir: ``str``, the directory with the static files. If ``None``,
        no static files are served.
    """
    def __init__(self, host='localhost', port=4011, public_dir=None):
        self.host = host
        self.port = port
        self.public_dir = realpath(public_dir) if public_dir else None
        self.actions = {}
        self.httpd = None
        self.server_thread = None

    def on_action(self, path, methods, cb):
        """Register a callback to handle requests to ``path`` with any of the given ``methods``.

        :param path: ``str``, the request path, for example ``"/api/log"``.
        :param methods: ``str`` or ``list`` of ``str``, the HTTP methods handled by the callback.
        :param cb: ``function``, the callback. It receives a :class:`Request` and
            must return a :class:`Response`:

            .. code-block:: python

                def callback(request):
                    return Response.json({'status': 'ok'})

        The callback may raise :class:`HTTPError` to respond with an error status.
        Any other exception results in a ``500 Internal Server Error`` response.
        """
        if isinstance(methods, str):
            methods = [methods]
        actions = self.actions.setdefault(path, {})
        for method in methods:
            actions[method.upper()] = cb

    def process(self, action, request):
        """Calls the action and converts its errors to error responses.
        """
        try:
            return action(request)
        except HTTPError as e:
            return Response.error(e.status, e.message)
        # pylint: disable=broad-except
        # The server must answer every request.
        except Exception as e:
            log.exception(e)
            return Response.error(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

    def resolve_static(self, path):
        """Resolves a request path to a file in the public directory.

        Returns the absolute path of the file, or ``None`` if there is no such
        file or the path points outside of the public directory.
        """
        if not self.public_dir:
            return None
        relative = unquote(path).lstrip('/')
        file_path = realpath(join_paths(self.public_dir, relative))
        if file_path != self.public_dir and not file_path.startswith(self.public_dir + os.sep):
            return None
        if isdir(file_path):
            file_path = join_paths(file_path, 'index.html')
        if not isfile(file_path):
            return None
        return file_path

    def start(self):
        """Starts the server.

        Binds to the host and port, then serves the requests in a separate thread.
        This call blocks until the server is bound or an error occurs.
        """
        self.httpd = _HTTPServer((self.host, self.port), _RequestHandler, self)
        self.port = self.httpd.server_address[1]
        self.server_thread = Thread(target=self.httpd.serve_forever,
                                    name='http-server@%s:%d' % (self.host, self.port))
        self.server_thread.start()
        log.info('Server listening on http://%s:%d', self.host, self.port)

    def join(self):
        """Blocks until the server stops.
        """
        if self.server_thread:
            self.server_thread.join()

    def stop(self):
        """Stops the server.

        This operation blocks until the server stops serving.
        """
        if self.httpd is None:
            return
        self.httpd.shutdown()
        self.httpd.server_close()
        self.join()
        self.httpd = None
        log.debug('Server stopped.')

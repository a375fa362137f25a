"""
=============================================================================
SSISERVE - Static File Server With Server-Side Includes
=============================================================================

Serves a directory over HTTP on any mix of TCP ports, UNIX domain sockets
and Windows named pipes, expanding SSI directives in HTML pages against a
remote origin on the way out.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    ssiserve/
    ├── __main__.py          # CLI (ssiserve / python -m ssiserve)
    ├── server.py            # ServeApp: owns pool, listeners, transform
    ├── listener.py          # one endpoint: bind, port fallback, announce
    ├── shutdown.py          # run-once close sequence, signal handling
    ├── config.py            # ServeConfig dataclass, path globs, env
    ├── loader.py            # serve.json discovery + schema validation
    ├── presentation.py      # banner, clipboard, LAN address
    ├── update_check.py      # PyPI version check
    ├── core/                # endpoints, sockets, pipes, pool, connections
    ├── http/                # request parser, response serializer
    ├── middleware/          # access log, gzip
    ├── handlers/            # FileResponder
    └── transform/           # charset detection, SSI, streaming transform

=============================================================================
QUICK START
=============================================================================

    from ssiserve import ServeApp, ServeConfig
    from ssiserve.core import parse_endpoint

    app = ServeApp(ServeConfig(public="site", ssi="https://cdn.example.com"))
    app.start([parse_endpoint("8080")])
    app.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServeConfig
from .server import ServeApp

__all__ = ["ServeApp", "ServeConfig", "__version__"]

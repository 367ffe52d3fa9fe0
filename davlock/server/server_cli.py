# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
server_cli
==========

Standalone server that runs DavLock.

These tasks are performed:

    - Set up the configuration from defaults, configuration file, and command line
      options.
    - Instantiate the DavLockApp object (which is a WSGI application)
    - Start a WSGI server for this DavLockApp object

Configuration is defined like this:

    1. Get the name of a configuration file from command line option
       ``--config=FILENAME`` (or short ``-cFILENAME``).
       If this option is omitted, we use ``davlock.yaml`` or ``davlock.json``
       in the current directory.
    2. Set reasonable default settings.
    3. If configuration file exists: read and use it to overwrite defaults.
    4. If command line options are passed, use them to override settings:

       ``--host`` option overrides ``host`` setting.

       ``--port`` option overrides ``port`` setting.

       ``--root=FOLDER`` option publishes FOLDER as resource tree (instead of
       the in-memory tree).
"""

import argparse
import copy
import json
import logging
import os
import platform
import sys
from pprint import pformat

import yaml
from jsmin import jsmin

from davlock import __version__, util
from davlock.davlock_app import DavLockApp
from davlock.default_conf import DEFAULT_CONFIG, DEFAULT_VERBOSE

__docformat__ = "reStructuredText"

#: Try this config files if no --config=... option is specified
DEFAULT_CONFIG_FILES = ("davlock.yaml", "davlock.json")

_logger = logging.getLogger("davlock")


class FullExpandedPath(argparse.Action):
    """Expand user- and relative-paths"""

    def __call__(self, parser, namespace, values, option_string=None):
        new_val = os.path.abspath(os.path.expanduser(values))
        setattr(namespace, self.dest, new_val)


def _init_command_line_options(argv=None):
    """Parse command line options into a dictionary."""
    description = """\

Run a WebDAV server that supports class 2 (locking).

Examples:

  Publish filesystem folder '/temp' (no config file used):
    davlock --port=80 --host=0.0.0.0 --root=/temp --no-config

  Run using a specific configuration file:
    davlock --port=80 --host=0.0.0.0 --config=~/my_davlock.yaml

  If no config file is specified, the application will look for a file named
  'davlock.yaml' or 'davlock.json' in the current directory.
  """

    epilog = """\
Licensed under the MIT license.
See https://github.com/mar10/wsgidav for additional information.

"""

    parser = argparse.ArgumentParser(
        prog="davlock",
        description=description,
        epilog=epilog,
        allow_abbrev=False,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        help="port to serve on (default: 8080)",
    )
    parser.add_argument(
        "-H",  # '-h' conflicts with --help
        "--host",
        help=(
            "host to serve from (default: localhost). 'localhost' is only "
            "accessible from the local computer. Use 0.0.0.0 to make your "
            "application public"
        ),
    )
    parser.add_argument(
        "-r",
        "--root",
        dest="root_path",
        action=FullExpandedPath,
        help="path to a file system folder to publish (default: in-memory tree).",
    )
    parser.add_argument(
        "--server",
        choices=SUPPORTED_SERVERS.keys(),
        help="type of pre-installed WSGI server to use (default: wsgiref).",
    )

    qv_group = parser.add_mutually_exclusive_group()
    qv_group.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=3,
        help="increment verbosity by one (default: %(default)s, range: 0..5)",
    )
    qv_group.add_argument(
        "-q", "--quiet", default=0, action="count", help="decrement verbosity by one"
    )

    qv_group = parser.add_mutually_exclusive_group()
    qv_group.add_argument(
        "-c",
        "--config",
        dest="config_file",
        action=FullExpandedPath,
        help=(
            f"configuration file (default: {DEFAULT_CONFIG_FILES} in current directory)"
        ),
    )
    qv_group.add_argument(
        "--no-config",
        action="store_true",
        help=f"do not try to load default {DEFAULT_CONFIG_FILES}",
    )

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="print version info and exit (may be combined with --verbose)",
    )

    args = parser.parse_args(argv)

    args.verbose -= args.quiet
    del args.quiet

    if args.root_path and not os.path.isdir(args.root_path):
        msg = f"{args.root_path} is not a directory"
        parser.error(msg)

    if args.version:
        if args.verbose >= 4:
            version_info = "DavLock/{} {}/{}({} bit) {}".format(
                __version__,
                platform.python_implementation(),
                util.PYTHON_VERSION,
                "64" if sys.maxsize > 2**32 else "32",
                platform.platform(aliased=True),
            )
            version_info += f"\nPython from: {sys.executable}"
        else:
            version_info = f"{__version__}"
        print(version_info)
        sys.exit()

    if args.no_config:
        pass
        # ... else ignore default config files
    elif args.config_file is None:
        # If --config was omitted, use default (if it exists)
        for filename in DEFAULT_CONFIG_FILES:
            defPath = os.path.abspath(filename)
            if os.path.exists(defPath):
                if args.verbose >= 3:
                    print(f"Using default configuration file: {defPath}")
                args.config_file = defPath
                break
    else:
        # If --config was specified convert to absolute path and assert it exists
        args.config_file = os.path.abspath(args.config_file)
        if not os.path.isfile(args.config_file):
            parser.error(
                f"Could not find specified configuration file: {args.config_file}"
            )

    # Convert args object to dictionary
    cmdLineOpts = args.__dict__.copy()
    if args.verbose >= 5:
        print("Command line args:")
        for k, v in cmdLineOpts.items():
            print(f"    {k:>12}: {v}")
    return cmdLineOpts, parser


def _read_config_file(config_file, _verbose):
    """Read configuration file options into a dictionary."""

    config_file = os.path.abspath(config_file)

    if not os.path.exists(config_file):
        raise RuntimeError(f"Couldn't open configuration file {config_file!r}.")

    if config_file.endswith(".json"):
        with open(config_file, encoding="utf-8-sig") as fp:
            # Remove comments before parsing
            conf = json.loads(jsmin(fp.read()))

    elif config_file.endswith((".yaml", ".yml")):
        with open(config_file, encoding="utf-8-sig") as fp:
            conf = yaml.safe_load(fp)

    else:
        raise RuntimeError(
            f"Unsupported config file format (expected yaml or json): {config_file}"
        )

    if conf is None:
        conf = {}
    elif not isinstance(conf, dict):
        raise RuntimeError(f"Expected a dictionary in configuration file {config_file!r}.")

    conf["_config_file"] = config_file
    conf["_config_root"] = os.path.dirname(config_file)
    return conf


def _init_config(argv=None):
    """Setup configuration dictionary from default, command line and configuration file."""
    cli_opts, parser = _init_command_line_options(argv)
    cli_verbose = cli_opts["verbose"]

    # Set config defaults
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["_config_file"] = None
    config["_config_root"] = os.getcwd()

    # Configuration file overrides defaults
    config_file = cli_opts.get("config_file")
    if config_file:
        file_opts = _read_config_file(config_file, cli_verbose)
        util.deep_update(config, file_opts)
        if cli_verbose != DEFAULT_VERBOSE and "verbose" in file_opts:
            if cli_verbose >= 2:
                print(
                    "Config file defines 'verbose: {}' but is overridden by command line: {}.".format(
                        file_opts["verbose"], cli_verbose
                    )
                )
            config["verbose"] = cli_verbose
    else:
        if cli_verbose >= 2:
            print("Running without configuration file.")

    # Command line overrides file
    if cli_opts.get("port"):
        config["port"] = cli_opts.get("port")
    if cli_opts.get("host"):
        config["host"] = cli_opts.get("host")
    if cli_opts.get("server") is not None:
        config["server"] = cli_opts.get("server")

    # Command line overrides file only if -v or -q where passed:
    if cli_opts.get("verbose") != DEFAULT_VERBOSE:
        config["verbose"] = cli_opts.get("verbose")

    if cli_opts.get("root_path"):
        config["resource_tree"] = os.path.abspath(cli_opts.get("root_path"))
    elif isinstance(config.get("resource_tree"), str):
        # Relative folder paths in config files are relative to the file
        config["resource_tree"] = os.path.abspath(
            os.path.join(config["_config_root"], os.path.expanduser(config["resource_tree"]))
        )

    if config["verbose"] >= 5:
        print(
            "Configuration({}):\n{}".format(cli_opts["config_file"], pformat(config))
        )

    return cli_opts, config


def _run_cheroot(app, config, _server):
    """Run DavLock using cheroot.server (https://cheroot.cherrypy.dev/)."""
    try:
        from cheroot import wsgi
    except ImportError:
        _logger.exception("Could not import Cheroot (https://cheroot.cherrypy.dev/).")
        _logger.error("Try `pip install cheroot`.")
        return False

    version = f"{util.public_davlock_info} {wsgi.Server.version}"
    url = f"http://{config['host']}:{config['port']}"

    _logger.info(f"Running {version}")
    _logger.info(f"Serving on {url} ...")

    server_args = {
        "bind_addr": (config["host"], config["port"]),
        "wsgi_app": app,
        "server_name": version,
    }
    # Override or add custom args
    custom_args = util.get_dict_value(config, "server_args", as_dict=True)
    server_args.update(custom_args)

    server = wsgi.Server(**server_args)
    try:
        server.start()
    except KeyboardInterrupt:
        _logger.warning("Caught Ctrl-C, shutting down...")
    finally:
        server.stop()
    return


def _run_wsgiref(app, config, _server):
    """Run DavLock using wsgiref.simple_server (https://docs.python.org/3/library/wsgiref.html)."""
    from wsgiref.simple_server import WSGIRequestHandler, make_server

    version = WSGIRequestHandler.server_version
    version = f"{util.public_davlock_info} {version}"
    _logger.info(f"Running {version} ...")

    _logger.warning(
        "WARNING: This single threaded server (wsgiref) is not meant for production."
    )
    WSGIRequestHandler.server_version = version
    httpd = make_server(config["host"], config["port"], app)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        _logger.warning("Caught Ctrl-C, shutting down...")
    return


SUPPORTED_SERVERS = {
    "cheroot": _run_cheroot,
    "wsgiref": _run_wsgiref,
}


def run():
    _cli_opts, config = _init_config()

    config["logging"]["enable"] = True

    app = DavLockApp(config)

    server = config["server"]
    handler = SUPPORTED_SERVERS.get(server)
    if not handler:
        raise RuntimeError(
            "Unsupported server type {!r} (expected {!r})".format(
                server, "', '".join(SUPPORTED_SERVERS.keys())
            )
        )

    handler(app, config, server)
    return


if __name__ == "__main__":
    run()

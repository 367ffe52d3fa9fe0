#!/usr/bin/env python

import os

from setuptools import find_packages, setup

from davlock import __version__

version = __version__

try:
    with open("README.md", encoding="utf-8") as fp:
        readme = fp.read()
except OSError:
    readme = "(Readme file not found. Running from tox?)"

# 'setup.py upload' fails on Vista, because .pypirc is searched on 'HOME' path
if "HOME" not in os.environ and "HOMEPATH" in os.environ:
    os.environ.setdefault("HOME", os.environ.get("HOMEPATH", ""))
    print("Initializing HOME environment variable to '{}'".format(os.environ["HOME"]))

# Cheroot is the preferred server for the stand-alone mode
# (`davlock.server.server_cli.py`), but wsgiref is used by default.
# We currently do not add it as an installation requirement, because
#   1. users may not need the command line server at all
#   2. users may prefer another server

install_requires = ["defusedxml", "jsmin", "PyYAML"]
tests_require = ["pytest", "WebTest"]

setup(
    name="DavLock",
    version=version,
    author="Martin Wendt",
    author_email="wsgidav@wwwendt.de",
    maintainer="Martin Wendt",
    maintainer_email="wsgidav@wwwendt.de",
    url="https://github.com/mar10/wsgidav/",
    description="WebDAV class 2 locking (LOCK, UNLOCK and lock token checks) for WSGI",
    long_description=readme,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Information Technology",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Topic :: Internet :: WWW/HTTP :: WSGI",
        "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords="web wsgi webdav lock application server",
    license="MIT",
    packages=find_packages(exclude=["tests"]),
    python_requires=">=3.9",
    install_requires=install_requires,
    py_modules=[],
    zip_safe=False,
    extras_require={
        "test": tests_require,
        "cheroot": ["cheroot"],
    },
    entry_points={"console_scripts": ["davlock = davlock.server.server_cli:run"]},
)

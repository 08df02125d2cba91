#!/usr/bin/env python
# -*- coding: utf-8 -*-

import os
import re

from setuptools import setup


def get_version(package):
    """
    Return package version as listed in `__version__` in `init.py`.
    """
    init_py = open(os.path.join(package, "__init__.py")).read()
    return re.search("__version__ = ['\"]([^'\"]+)['\"]", init_py).group(1)


def get_long_description():
    """
    Return the README.
    """
    return open("README.md", "r", encoding="utf8").read()


def get_packages(package):
    """
    Return root package and all sub-packages.
    """
    return [
        dirpath
        for dirpath, dirnames, filenames in os.walk(package)
        if os.path.exists(os.path.join(dirpath, "__init__.py"))
    ]


setup(
    name="sse-simulator",
    version=get_version("sse_simulator"),
    license="BSD",
    description="Server-Sent Events test source for clients, proxies and middleware",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    package_data={"sse_simulator": ["py.typed"]},
    packages=get_packages("sse_simulator"),
    python_requires=">=3.9",
    install_requires=[
        "anyio>=4.0",
        "starlette>=0.37",
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "uvicorn>=0.29",
        "typer>=0.9",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
            "httpx-sse>=0.4",
            "asgi-lifespan>=2.1",
        ],
    },
    entry_points={
        "console_scripts": ["sse-simulator=sse_simulator.cli:app"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Software Development :: Testing",
        "Programming Language :: Python :: 3",
    ],
)

# -*- coding: utf-8 -*-
from setuptools import setup, find_packages
import sys
if sys.version_info < (3, 11):
    sys.exit('Sorry, Python < 3.11 is not supported.')

setup(
    name="uptrack",
    version="0.1.0",
    description="Keeps downstream container images in sync with the upstream images they are built from",
    license="Apache License, Version 2.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "aiohttp>=3.9",
        "async-lru>=2.0",
        "click>=8.1",
        "jinja2>=3.1",
        "opentelemetry-api>=1.20",
        "pydantic>=2.5",
        "python-dateutil>=2.8",
        "ruamel.yaml>=0.18",
        "tenacity>=8.2",
    ],
    extras_require={
        "tests": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "uptrack = uptracklib.cli.__main__:main",
        ],
    },
    dependency_links=[],
    python_requires='>=3.11',
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Environment :: Console",
        "Operating System :: POSIX",
        "License :: OSI Approved :: Apache Software License",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Natural Language :: English",
    ]
)

import io
import os
import re

from setuptools import find_packages, setup


with io.open("flask_bpmn/__init__.py", "rt", encoding="utf8") as f:
    version = re.search(r"__version__ = \"(.*?)\"", f.read()).group(1)


def fpath(name):
    return os.path.join(os.path.dirname(__file__), name)


def read(fname):
    with open(fpath(fname)) as f:
        return f.read()


def desc():
    return read("README.rst")


setup(
    name="Flask-BPMN",
    version=version,
    license="BSD",
    description=(
        "BPMN-style process execution engine for Flask applications."
        " Runs tasks through registered handler chains with exclusive and"
        " parallel gateways, retries, timeouts and lifecycle events."
    ),
    long_description=desc(),
    long_description_content_type="text/x-rst",
    packages=find_packages(exclude=["tests*"]),
    include_package_data=True,
    zip_safe=False,
    platforms="any",
    install_requires=[
        "Flask>=2, <4",
        "jsonschema>=3, <5",
        "marshmallow>=3.18.0, <5",
    ],
    extras_require={
        "redis": ["redis>=4.0.0, <6"],
        "testing": ["pytest>=7"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.9",
)

from pathlib import Path

from setuptools import setup

install_requires = [
    "trio>=0.22.0",
    "trio-websocket>=0.10.0",
    "asks>=3.0.0",
    "pylru>=1.2.0",
    "h11",
]


setup(
    name='curlew',
    version="0.1.0",
    packages=['curlew', 'curlew.core', 'curlew.core._ws_wrapper', 'curlew.dataclasses'],
    url='https://github.com/curlew-py/curlew',
    license='LGPLv3',
    author='Laura Dickinson',
    author_email='l@veriny.tf',
    description='A trio library for the Discord gateway and REST API',
    long_description=Path(__file__).with_name("README.rst").read_text(encoding="utf-8"),
    python_requires=">=3.8",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Framework :: Trio",
        "Development Status :: 4 - Beta"
    ],
    install_requires=install_requires,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-trio>=0.8.0",
        ],
    },
)

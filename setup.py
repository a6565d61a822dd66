#!/usr/bin/env python3
import sys

from setuptools import setup

from cinc import __version__ as VERSION

if sys.version_info < (3, 9):
    sys.exit('Python 3.9 is required to run cinc')

setup(
    name='cinc',
    version=VERSION,
    license='GPL-3',
    packages=[
        'cinc',
        'cinc.backends',
        'cinc.util',
    ],
    zip_safe=False,
    install_requires=[
        'PyYAML',
        'keyring',
        'webdav4',
        'httpx',
    ],
    extras_require={
        'test': ['pytest'],
    },
    description='Cloud save synchronization for games that lack it',
    long_description="""cinc wraps the launch of a game: it pulls the newest saves
    from a storage backend (WebDav or a plain folder) before the game starts and
    pushes the saves the game wrote once it exits, refusing to overwrite
    anything when both sides changed.""",
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: End Users/Desktop',
        'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
        'Programming Language :: Python',
        'Operating System :: Linux',
        'Topic :: Games/Entertainment'
    ],
)

"""Pytest bootstrap ensuring the in-repo diag_server package is imported.

diag_server has no __init__.py (namespace package), so an older installed copy
in site-packages could otherwise shadow the working tree.
"""

import os, sys

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if REPO_ROOT not in sys.path:
    # Prepend so it wins over any site-packages installation
    sys.path.insert(0, REPO_ROOT)

DATA_DIR = os.path.join(os.path.dirname(__file__), 'data')


def data_path(name: str) -> str:
    return os.path.join(DATA_DIR, name)


def read_data(name: str) -> str:
    with open(data_path(name), 'r', encoding='utf-8') as fh:
        return fh.read()

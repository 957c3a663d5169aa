# fetchers/__init__.py
from . import famme

FETCHERS = {
    "famme": famme.fetch_feed,
}

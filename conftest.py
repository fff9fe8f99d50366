"""Root conftest.py — makes ``partiql_explorer`` importable from a source
checkout and keeps host EXPLORER_* settings out of the test run.
"""
import os

for _name in [k for k in os.environ if k.startswith('EXPLORER_')] + ['PORT', 'STUB_ENGINE_RESPONSE']:
    os.environ.pop(_name, None)

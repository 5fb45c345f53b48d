"""Test utilities for mosaic orchestrations.

Provides scriptable fake applications and a notification recorder::

    from mosaic.testing import FakeApp, RecordingSink
"""

from mosaic.testing.fakes import FakeApp, RecordingSink

__all__ = [
    "FakeApp",
    "RecordingSink",
]

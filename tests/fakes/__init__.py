"""In-memory fake implementations for testing.

This module provides fake implementations of otron protocols for use in
unit tests. Fakes are preferred over mocks because they:

1. Implement real protocol contracts, catching interface mismatches at test time
2. Provide deterministic, predictable behavior without call-order dependencies
3. Enable behavior-based testing (assert outputs/state) over interaction testing

Available fakes:
- FakeKeyValueClient: Dict-backed KeyValueClient with failure injection
- FakeModelClient: Scripted ModelClient recording every transcript
- FakeMemoryStore: Records memory writes, serves canned context
- RecordingActivityLog: Keeps every thought/action/response in order
- FakeChatNotifier, FakeCompletionHook, FakeRepositorySource

Usage:
    from tests.fakes import FakeKeyValueClient, FakeModelClient, tool_turn

    def test_something():
        model = FakeModelClient(script=[tool_turn(("getFileContent", {...}))])
"""

from tests.fakes.collaborators import (
    FakeChatNotifier,
    FakeCompletionHook,
    FakeMemoryStore,
    FakeRepositorySource,
    RecordingActivityLog,
)
from tests.fakes.kv import FakeKeyValueClient
from tests.fakes.model import FakeModelClient, ModelCall, text_turn, tool_turn

__all__ = [
    "FakeChatNotifier",
    "FakeCompletionHook",
    "FakeKeyValueClient",
    "FakeMemoryStore",
    "FakeModelClient",
    "FakeRepositorySource",
    "ModelCall",
    "RecordingActivityLog",
    "text_turn",
    "tool_turn",
]

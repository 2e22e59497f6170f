"""Output publishing, storage and cross-deployment references."""

from stackweave.outputs.publisher import (
    FlushResult,
    StackOutput,
    StackOutputPublisher,
    StackReference,
    fetch_output,
    render_stored,
)
from stackweave.outputs.store import (
    FileOutputStore,
    InMemoryOutputStore,
    OutputStore,
    StoredOutput,
    create_output_store,
)

__all__ = [
    "FileOutputStore",
    "FlushResult",
    "InMemoryOutputStore",
    "OutputStore",
    "StackOutput",
    "StackOutputPublisher",
    "StackReference",
    "StoredOutput",
    "create_output_store",
    "fetch_output",
    "render_stored",
]

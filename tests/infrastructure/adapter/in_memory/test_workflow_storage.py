"""
Tests for InMemoryWorkflowStorage and InMemoryCacheBackend.
"""

from stepflow.domain.entity import Workflow, WorkflowStep
from stepflow.domain.value_object import CacheEntry
from stepflow.infrastructure.adapter.in_memory.cache_backend import InMemoryCacheBackend
from stepflow.infrastructure.adapter.in_memory.workflow_storage import InMemoryWorkflowStorage


def make_workflow(id: str, name: str, description: str | None = None) -> Workflow:
    return Workflow(id=id, name=name, description=description, steps=(WorkflowStep(id="a", tool_id="echo"),))


class TestInMemoryWorkflowStorage:
    """Test cases for InMemoryWorkflowStorage."""

    def setup_method(self):
        """Setup test fixtures."""
        self.storage = InMemoryWorkflowStorage()

    def test_save_and_load(self):
        """Test a stored workflow comes back unchanged."""
        workflow = make_workflow("wf", "Login")
        self.storage.save(workflow)

        assert self.storage.load("wf") == workflow
        assert self.storage.load("missing") is None
        assert self.storage.exists("wf")

    def test_list_newest_first(self):
        """Test ordering of summaries."""
        self.storage.save(make_workflow("one", "One"))
        self.storage.save(make_workflow("two", "Two"))
        self.storage.save(make_workflow("one", "One again"))

        summaries = self.storage.list()

        assert [s.id for s in summaries] == ["one", "two"]
        assert summaries[0].name == "One again"
        assert summaries[0].step_count == 1

    def test_resave_keeps_created_at(self):
        """Test that created_at survives updates."""
        self.storage.save(make_workflow("wf", "First"))
        created = self.storage.list()[0].created_at
        self.storage.save(make_workflow("wf", "Second"))

        summary = self.storage.list()[0]
        assert summary.created_at == created
        assert summary.updated_at >= created

    def test_search(self):
        """Test case-insensitive search over name, description and tags."""
        self.storage.save(make_workflow("a", "Invoice OCR"))
        self.storage.save(make_workflow("b", "Login", description="Clicks the LOGIN button"))
        self.storage.save(make_workflow("c", "Other"), tags=["nightly"])

        assert [s.id for s in self.storage.search("ocr")] == ["a"]
        assert [s.id for s in self.storage.search("button")] == ["b"]
        assert [s.id for s in self.storage.search("NIGHT")] == ["c"]
        assert self.storage.search("nothing") == []

    def test_delete_and_clear(self):
        """Test removal."""
        self.storage.save(make_workflow("a", "A"))
        self.storage.save(make_workflow("b", "B"))

        assert self.storage.delete("a") is True
        assert self.storage.delete("a") is False
        self.storage.clear()
        assert self.storage.list() == []


class TestInMemoryCacheBackend:
    """Test cases for InMemoryCacheBackend."""

    def test_set_get_delete(self):
        """Test basic operations."""
        backend = InMemoryCacheBackend()
        entry = CacheEntry(key="k", value=1, created_at=0)
        backend.set(entry)

        assert backend.get("k") is entry
        assert backend.delete("k") is True
        assert backend.get("k") is None

    def test_clear_scoped(self):
        """Test clearing by workflow."""
        backend = InMemoryCacheBackend()
        backend.set(CacheEntry(key="a", value=1, created_at=0, workflow_id="wf1"))
        backend.set(CacheEntry(key="b", value=2, created_at=0, workflow_id="wf2"))

        assert backend.clear("wf1") == 1
        assert len(backend) == 1
        assert backend.clear() == 1

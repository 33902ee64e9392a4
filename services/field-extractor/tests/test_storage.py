"""Tests for template persistence."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from models import PromptVersion, Template
from storage import InMemoryTemplateStore, JsonFileTemplateStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryTemplateStore(history_limit=3)
    return JsonFileTemplateStore(tmp_path / "data" / "templates.json", history_limit=3)


def _version(template_id: str, n: int) -> PromptVersion:
    return PromptVersion(
        version=f"v{n}",
        template_id=template_id,
        prompt=f"prompt {n}",
        enabled_fields=["amount"],
    )


class TestTemplateStore:
    def test_empty(self, store):
        assert store.load() == []
        assert store.get("missing") is None
        assert store.get_active_id() is None

    def test_save_and_get(self, store, invoice_template: Template):
        store.save(invoice_template)
        loaded = store.get(invoice_template.id)
        assert loaded == invoice_template

    def test_save_replaces_same_id(self, store, invoice_template: Template):
        store.save(invoice_template)
        renamed = invoice_template.model_copy(update={"name": "Renamed"})
        store.save(renamed)

        templates = store.load()
        assert len(templates) == 1
        assert templates[0].name == "Renamed"
        assert templates[0].updated_at >= invoice_template.updated_at

    def test_returned_templates_are_copies(self, store, invoice_template: Template):
        store.save(invoice_template)
        loaded = store.get(invoice_template.id)
        loaded.fields[0].name = "Mutated"
        assert store.get(invoice_template.id).fields[0].name == "Invoice Number"

    def test_active_id(self, store, invoice_template: Template):
        store.save(invoice_template)
        store.set_active_id(invoice_template.id)
        assert store.get_active_id() == invoice_template.id

    def test_delete_clears_related_state(self, store, invoice_template: Template):
        store.save(invoice_template)
        store.set_active_id(invoice_template.id)
        store.record_prompt_version(_version(invoice_template.id, 1))
        store.save_trained_instructions(invoice_template.id, {"amount": "Grand total"})

        store.delete(invoice_template.id)

        assert store.get(invoice_template.id) is None
        assert store.get_active_id() is None
        assert store.prompt_history(invoice_template.id) == []
        assert store.get_trained_instructions(invoice_template.id) == {}

    def test_prompt_history_capped(self, store):
        for n in range(5):
            store.record_prompt_version(_version("template-a", n))
        store.record_prompt_version(_version("template-b", 0))

        history = store.prompt_history("template-a")
        assert [v.version for v in history] == ["v2", "v3", "v4"]
        assert len(store.prompt_history("template-b")) == 1

    def test_trained_instructions(self, store):
        store.save_trained_instructions("template-a", {"amount": "Grand total after tax"})
        assert store.get_trained_instructions("template-a") == {"amount": "Grand total after tax"}
        assert store.get_trained_instructions("template-b") == {}


class TestJsonFileTemplateStore:
    def test_survives_reopen(self, tmp_path: Path, invoice_template: Template):
        path = tmp_path / "templates.json"
        JsonFileTemplateStore(path).save(invoice_template)

        reopened = JsonFileTemplateStore(path)
        assert reopened.get(invoice_template.id) == invoice_template

    def test_no_temp_files_left(self, tmp_path: Path, invoice_template: Template):
        store = JsonFileTemplateStore(tmp_path / "templates.json")
        store.save(invoice_template)
        store.set_active_id(invoice_template.id)
        assert [p.name for p in tmp_path.iterdir()] == ["templates.json"]

"""
Tests for the config store and the rules/references libraries built on it:
- Mutations are persisted before they are committed and observed.
- A failed write leaves the committed config untouched.
- Library CRUD validates names and keeps priority order.
"""

import pytest
from unittest.mock import MagicMock, patch

from src.agentcore.config_store import ConfigStore
from src.agentcore.context_library import ReferencesLibrary, RulesLibrary, validate_document_name
from src.agentcore.errors import ContextItemError
from src.agentcore.yaml_config import AGENT_YAML, AgentConfig, Reference, Rule, load_config


class TestConfigStore:
    def test_update_persists_and_commits(self, tmp_path):
        path = tmp_path / AGENT_YAML
        store = ConfigStore(AgentConfig(), path=path)

        store.update_config(lambda c: setattr(c, "system_prompt", "New prompt"), "system_prompt")

        assert store.get_config().system_prompt == "New prompt"
        assert load_config(path).system_prompt == "New prompt"

    def test_mutator_works_on_a_copy(self, tmp_path):
        original = AgentConfig()
        store = ConfigStore(original, path=tmp_path / AGENT_YAML)
        store.update_config(lambda c: setattr(c, "system_prompt", "changed"), "system_prompt")
        assert original.system_prompt != "changed"

    def test_failed_write_does_not_commit_or_notify(self, tmp_path):
        store = ConfigStore(AgentConfig(), path=tmp_path / AGENT_YAML)
        observer = MagicMock()
        store.subscribe("system_prompt", observer)

        with patch("src.agentcore.config_store.save_config", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.update_config(lambda c: setattr(c, "system_prompt", "lost"), "system_prompt")

        assert store.get_config().system_prompt != "lost"
        observer.assert_not_called()

    def test_read_only_store_skips_write(self, tmp_path):
        path = tmp_path / AGENT_YAML
        store = ConfigStore(AgentConfig(), path=path, read_only=True)
        store.update_config(lambda c: setattr(c, "system_prompt", "memory only"), "system_prompt")
        assert store.get_config().system_prompt == "memory only"
        assert not path.exists()

    def test_observers_see_committed_config_for_their_section_only(self):
        store = ConfigStore(AgentConfig())
        seen = []
        store.subscribe("rules", lambda change: seen.append((change.section, change.config is store.get_config())))

        store.update_config(lambda c: None, "settings")
        store.update_config(lambda c: None, "rules")

        assert seen == [("rules", True)]

    def test_failing_observer_does_not_break_update(self):
        store = ConfigStore(AgentConfig())
        store.subscribe("rules", MagicMock(side_effect=RuntimeError("boom")))
        store.update_config(lambda c: c.rules.append(Rule(name="r", text="t")), "rules")
        assert store.get_config().rules[0].name == "r"

    def test_unsubscribe(self):
        store = ConfigStore(AgentConfig())
        observer = MagicMock()
        store.subscribe("rules", observer)
        store.unsubscribe("rules", observer)
        store.update_config(lambda c: None, "rules")
        observer.assert_not_called()


class TestContextLibrary:
    def setup_method(self):
        self.store = ConfigStore(AgentConfig())
        self.rules = RulesLibrary(self.store)
        self.references = ReferencesLibrary(self.store)

    def test_save_and_get(self):
        self.rules.save(Rule(name="be-nice", text="Be nice."))
        assert self.rules.exists("be-nice")
        assert self.rules.get("be-nice").text == "Be nice."
        assert self.references.get("be-nice") is None

    def test_save_replaces_same_name(self):
        self.rules.save(Rule(name="r1", text="old"))
        self.rules.save(Rule(name="r1", text="new"))
        assert [r.text for r in self.rules.get_all()] == ["new"]

    def test_get_all_sorted_by_priority_then_name(self):
        self.references.save(Reference(name="b", text="x", priority_level=100))
        self.references.save(Reference(name="a", text="x", priority_level=100))
        self.references.save(Reference(name="c", text="x", priority_level=5))
        assert [r.name for r in self.references.get_all()] == ["c", "a", "b"]

    def test_delete(self):
        self.rules.save(Rule(name="r1", text="t"))
        assert self.rules.delete("r1") is True
        assert self.rules.delete("r1") is False

    @pytest.mark.parametrize("name", ["", "has space", "semi;colon", "../etc"])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(ContextItemError):
            validate_document_name(name)

    def test_store_embeddings(self):
        self.rules.save(Rule(name="r1", text="t"))
        self.rules.store_embeddings("r1", [[1.0, 0.0]], "abc")
        entry = self.rules.get("r1").cache_entry()
        assert entry.embeddings == [[1.0, 0.0]]
        assert entry.hash == "abc"

    def test_on_change_fires_after_save(self):
        changes = []
        self.rules.on_change(lambda change: changes.append([r.name for r in change.config.rules]))
        self.rules.save(Rule(name="r1", text="t"))
        assert changes == [["r1"]]

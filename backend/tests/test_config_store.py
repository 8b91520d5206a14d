"""
Tests for the configuration store: settings, model parameters, rules and
strategy cards.
"""

import json

import pytest

from errors import ErrorCode, NotFoundError, ParleyError, RuleValidationError, ValidationError
from services.config_store import (
    DEFAULT_FALLBACK_RESPONSE,
    KEY_MAIN_MODEL,
    KEY_PRE_MODEL,
    ConfigStore,
    SettingsSnapshot,
)


def _rule(**overrides):
    row = {"priority": 10, "triggerIntent": "投诉", "triggerEmotion": None, "strategyKey": "APOLOGY"}
    row.update(overrides)
    return row


class TestSettings:

    def test_defaults_seeded(self):
        store = ConfigStore()
        snapshot = store.snapshot()
        assert snapshot.strategy_enabled is True
        assert snapshot.workflow_enabled is True
        assert snapshot.fallback_response == DEFAULT_FALLBACK_RESPONSE
        assert len(snapshot.processes) == 5

    def test_seed_never_overwrites(self, store):
        store.save_settings({"opening_monologue": "欢迎"})
        assert store.seed_defaults({"opening_monologue": "别的"}) == []
        assert store.get_setting("opening_monologue") == "欢迎"

    def test_save_settings_normalizes_values(self, store):
        saved = store.save_settings({"enable_workflow": False, "extra": None, "custom": {"a": 1}})
        assert saved == {"enable_workflow": "false", "extra": "", "custom": '{"a": 1}'}
        assert store.snapshot().workflow_enabled is False

    def test_missing_boolean_is_false(self):
        assert SettingsSnapshot({}).get_bool("enable_strategy") is False
        assert SettingsSnapshot({"enable_strategy": "TRUE"}).get_bool("enable_strategy") is True

    def test_blank_key_rejected(self, store):
        with pytest.raises(ValidationError):
            store.save_settings({"  ": "x"})

    def test_snapshot_is_isolated_from_later_writes(self, store):
        snapshot = store.snapshot()
        store.save_settings({"enable_strategy": "false"})
        assert snapshot.strategy_enabled is True
        assert store.snapshot().strategy_enabled is False


class TestModelParams:

    def test_defaults(self, store):
        params = store.snapshot().model_params(KEY_PRE_MODEL)
        assert params.model_name == "qwen-turbo"

    def test_save_model_params(self, store):
        store.save_model_params(KEY_MAIN_MODEL, {"modelName": "qwen-max", "temperature": 0.3})
        params = store.snapshot().model_params(KEY_MAIN_MODEL)
        assert params.model_name == "qwen-max"
        assert params.temperature == 0.3

    def test_unknown_key_rejected(self, store):
        with pytest.raises(ValidationError):
            store.save_model_params("other_model_params", {"modelName": "x"})

    def test_non_numeric_param_rejected(self, store):
        with pytest.raises(ValidationError) as exc:
            store.save_model_params(KEY_MAIN_MODEL, {"modelName": "qwen-max", "temperature": "warm"})
        assert exc.value.code == ErrorCode.VALIDATION_INVALID_TYPE

    def test_invalid_json_rejected_on_bulk_save(self, store):
        with pytest.raises(ValidationError) as exc:
            store.save_settings({KEY_MAIN_MODEL: "{not json"})
        assert exc.value.code == ErrorCode.VALIDATION_INVALID_TYPE
        assert json.loads(store.get_setting(KEY_MAIN_MODEL))["modelName"] == "qwen3-next-80b-a3b-instruct"


class TestRules:

    def test_create_assigns_id_and_discards_draft_id(self, store):
        first = store.create_rule(_rule(id=-3))
        second = store.create_rule(_rule(priority=20))
        assert first["id"] == 1
        assert second["id"] == 2
        assert [r["id"] for r in store.list_rules()] == [1, 2]

    def test_create_rejects_invalid_without_consuming_id(self, store):
        with pytest.raises(RuleValidationError):
            store.create_rule(_rule(triggerIntent=""))
        assert store.create_rule(_rule())["id"] == 1

    def test_update_and_delete(self, store):
        rule = store.create_rule(_rule())
        updated = store.update_rule(rule["id"], _rule(priority=99, isActive=False))
        assert updated["priority"] == 99
        assert updated["isActive"] is False

        store.delete_rule(rule["id"])
        assert store.list_rules() == []

    def test_update_draft_id_rejected(self, store):
        with pytest.raises(ValidationError):
            store.update_rule(-1, _rule())

    def test_missing_rule_not_found(self, store):
        with pytest.raises(NotFoundError) as exc:
            store.update_rule(42, _rule())
        assert exc.value.code == ErrorCode.NOT_FOUND_RULE
        with pytest.raises(NotFoundError):
            store.delete_rule(42)

    def test_active_rules_sorted_and_filtered(self, store):
        store.create_rule(_rule(priority=10))
        store.create_rule(_rule(priority=50, triggerEmotion="生气"))
        store.create_rule(_rule(priority=50))
        store.create_rule(_rule(priority=90, isActive=False))
        ordered = [(r.priority, r.trigger_emotion) for r in store.list_active_rules()]
        assert ordered == [(50, "生气"), (50, None), (10, None)]

    def test_malformed_stored_row_skipped(self, store):
        store.create_rule(_rule())
        store._data["rules"].append({"id": 9, "priority": "high", "triggerIntent": "x", "strategyKey": "S"})
        assert [r.id for r in store.list_active_rules()] == [1]


class TestStrategies:

    def test_crud(self, store):
        card = store.create_strategy({"strategyKey": "APOLOGY", "strategyValue": "先道歉"})
        assert card["id"] == 1
        assert store.active_strategies() == {"APOLOGY": "先道歉"}

        store.update_strategy(card["id"], {"strategyKey": "APOLOGY", "strategyValue": "先道歉", "isActive": False})
        assert store.active_strategies() == {}

        store.delete_strategy(card["id"])
        assert store.list_strategies() == []

    def test_duplicate_key_rejected(self, store):
        store.create_strategy({"strategyKey": "A", "strategyValue": "x"})
        with pytest.raises(ValidationError) as exc:
            store.create_strategy({"strategyKey": "A", "strategyValue": "y"})
        assert exc.value.code == ErrorCode.VALIDATION_INVALID_FORMAT

    def test_blank_value_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_strategy({"strategyKey": "A", "strategyValue": "  "})

    def test_missing_strategy_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.delete_strategy(7)


class TestPersistence:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "config" / "settings.json"
        store = ConfigStore(str(path))
        store.save_settings({"opening_monologue": "欢迎光临"})
        store.create_rule(_rule())
        store.create_strategy({"strategyKey": "APOLOGY", "strategyValue": "先道歉"})

        reloaded = ConfigStore(str(path))
        assert reloaded.get_setting("opening_monologue") == "欢迎光临"
        assert [r.strategy_key for r in reloaded.list_active_rules()] == ["APOLOGY"]
        assert reloaded.active_strategies() == {"APOLOGY": "先道歉"}
        assert reloaded.create_rule(_rule())["id"] == 2

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(ParleyError) as exc:
            ConfigStore(str(path))
        assert exc.value.code == ErrorCode.CONFIG_READ_FAILED

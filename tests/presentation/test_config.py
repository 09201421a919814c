from src.presentation.api.config import Settings, _parse_list, _parse_mapping


def test_parse_list_accepts_json_csv_and_lists():
    assert _parse_list('["a", " b ", ""]') == ["a", "b"]
    assert _parse_list("a, b,,c") == ["a", "b", "c"]
    assert _parse_list(["x", None, " "]) == ["x"]
    assert _parse_list(None) == []
    assert _parse_list("   ") == []


def test_parse_mapping_ignores_invalid_input():
    assert _parse_mapping('{"al": "Alice"}') == {"al": "Alice"}
    assert _parse_mapping("not json") == {}
    assert _parse_mapping('["a"]') == {}
    assert _parse_mapping({"bob": "Bob", "": "x"}) == {"bob": "Bob"}


def test_settings_to_sync_config():
    settings = Settings(
        _env_file=None,
        clickup_api_token=" pk_test ",
        clickup_list_ids='["L1", "L2"]',
        team_members="Alice, Bob",
        team_member_order="Bob,Alice",
        name_alias_map='{"al": "Alice"}',
        holidays=["25/12", "01/01"],
        fallback_endpoints="https://proxy.example/?url=",
        assignee_filters="alice@example.com, bob",
    )

    config = settings.to_sync_config()

    assert config.token == "pk_test"
    assert config.list_ids == ("L1", "L2")
    assert config.workspace_id is None
    assert config.team_members == ("Alice", "Bob")
    assert config.team_member_order == ("Bob", "Alice")
    assert config.name_alias_map == {"al": "Alice"}
    assert len(config.holiday_calendar()) == 2
    assert config.fallback_endpoints == ("https://proxy.example/?url=",)
    assert config.source_spec().source_keys() == ("list:L1", "list:L2")
    assert config.assignee_filters == ("alice@example.com", "bob")
    assert settings.max_concurrent_sources is None


def test_app_name_suffix():
    assert Settings(_env_file=None, env="production").app_name_suffix == ""
    assert Settings(_env_file=None, env="local").app_name_suffix == " (Dev)"

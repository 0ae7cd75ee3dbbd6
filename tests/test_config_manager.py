"""Tests for core.config_manager."""

import json

from core.config_manager import ConfigManager, DEFAULT_UPSTREAM_URL, get_app_data_dir, get_config
from core.relay import HoldedRelay


def test_defaults_without_file(tmp_path):
    config = ConfigManager(config_path=tmp_path / 'config.json')
    assert config.get('upstream.base_url') == DEFAULT_UPSTREAM_URL
    assert config.get('upstream.per_page') == 50
    assert config.get('relay.port') == 8787
    assert config.get('missing.key', 'fallback') == 'fallback'


def test_file_is_merged_over_defaults(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'upstream': {'max_pages': 5}, 'relay': {'port': 9000}}), encoding='utf-8')

    config = ConfigManager(config_path=path)

    assert config.get('upstream.max_pages') == 5
    assert config.get('upstream.per_page') == 50
    assert config.get_relay_config() == {'host': '127.0.0.1', 'port': 9000}


def test_broken_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text('{not json', encoding='utf-8')

    config = ConfigManager(config_path=path)

    assert config.get('upstream.base_url') == DEFAULT_UPSTREAM_URL


def test_set_and_save_round_trip(tmp_path):
    path = tmp_path / 'config.json'
    config = ConfigManager(config_path=path)

    assert config.set('upstream.request_deadline', 15, save=True)

    assert ConfigManager(config_path=path).get('upstream.request_deadline') == 15


def test_get_config_uses_app_data_dir(tmp_path):
    config = get_config()
    assert config.config_path == tmp_path / 'app_data' / 'config.json'
    assert get_app_data_dir().is_dir()
    assert get_config() is config


def test_relay_from_config(tmp_path):
    config = ConfigManager(config_path=tmp_path / 'config.json')
    config.set('upstream.base_url', 'http://holded.test/api/team/v1/')
    config.set('upstream.max_pages', 3)

    relay = HoldedRelay.from_config(config.get_upstream_config())

    assert relay.base_url == 'http://holded.test/api/team/v1'
    assert relay.max_pages == 3
    assert relay.per_page == 50
    assert relay.request_deadline == 120

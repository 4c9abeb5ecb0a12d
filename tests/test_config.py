from __future__ import annotations

import logging

import pytest

from gardengen.config import DEFAULT_EMITTERS, SiteConfig, config_from_mapping, load_config
from gardengen.errors import ConfigError
from gardengen.pages import PageRenderer


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "site.toml")
    assert config == SiteConfig()
    assert config.emitters == DEFAULT_EMITTERS
    assert config.ignore_patterns == ["private", "templates", ".obsidian"]


def test_toml(tmp_path):
    path = tmp_path / "site.toml"
    path.write_text(
        "\n".join(
            [
                'page_title = "My Garden"',
                'link_resolution = "exact"',
                "build_workers = 3",
                'date_priority = ["git", "frontmatter"]',
                'transformers = ["FrontMatter", { name = "GitHubFlavoredMarkdown" }]',
                "",
                "[layout.content]",
                'right = ["backlinks"]',
            ]
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.page_title == "My Garden"
    assert config.link_resolution == "exact"
    assert config.build_workers == 3
    assert config.date_priority == ["git", "frontmatter"]
    assert config.transformers[1] == {"name": "GitHubFlavoredMarkdown"}
    assert config.layout["content"]["right"] == ["backlinks"]
    assert config.layout["content"]["left"] == ["page_title", "explorer"]
    assert "list" in config.layout


def test_yaml(tmp_path):
    path = tmp_path / "site.yaml"
    path.write_text("page_title: Yaml Garden\nincremental: 'no'\n", encoding="utf-8")
    config = load_config(path)
    assert config.page_title == "Yaml Garden"
    assert config.incremental is False


def test_json(tmp_path):
    path = tmp_path / "site.json"
    path.write_text('{"feed_limit": "5"}', encoding="utf-8")
    assert load_config(path).feed_limit == 5


def test_invalid_syntax(tmp_path):
    path = tmp_path / "site.json"
    path.write_text("{nope", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_config(path)


@pytest.mark.parametrize(
    "data",
    [
        {"link_resolution": "fuzzy"},
        {"default_date_type": "birthday"},
        {"on_error": "ignore"},
        {"date_priority": ["frontmatter", "frontmatter"]},
        {"date_priority": ["calendar"]},
        {"emitters": "ContentPage"},
        {"layout": {"content": ["explorer"]}},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ConfigError):
        config_from_mapping(data)


def test_unknown_keys_warn(caplog):
    with caplog.at_level(logging.WARNING):
        config_from_mapping({"pagetitle": "typo"})
    assert "pagetitle" in caplog.text


def test_unknown_layout_component():
    config = config_from_mapping({"layout": {"content": {"left": ["graph"]}}})
    with pytest.raises(ConfigError, match="graph"):
        PageRenderer(config)

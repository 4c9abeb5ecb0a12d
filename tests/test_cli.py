from __future__ import annotations

import pytest

from gardengen.cli import main


def write_config(root, *lines):
    path = root / "site.toml"
    path.write_text("\n".join(['page_title = "CLI Garden"', 'date_priority = ["frontmatter", "filesystem"]', *lines]))
    return path


def test_build_and_rebuild(garden, capsys):
    config = write_config(garden)
    main(["--config", str(config), "-q"])
    out = capsys.readouterr().out
    assert "Build completed in" in out
    assert "Documents: 5 built, 1 filtered, 0 failed (of 6 discovered)" in out
    assert "Link issues: 1" in out
    assert f"Site generated in: {garden / 'public'}" in out
    assert (garden / "public" / "a.html").is_file()

    main(["--config", str(config), "-q"])
    assert "not published" in capsys.readouterr().out


def test_flags_override_config(garden, capsys):
    config = write_config(garden, 'output = "public"')
    main(["--config", str(config), "--output", "site", "--base-url", "example.com", "--no-incremental", "-q"])
    capsys.readouterr()
    assert (garden / "site" / "sitemap.xml").is_file()
    assert not (garden / "public").exists()


def test_strict_build_fails_on_bad_document(garden, capsys):
    (garden / "content" / "broken.md").write_text("---\ntitle: [\n---\n", encoding="utf-8")
    config = write_config(garden)
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config), "--strict", "-q"])
    assert excinfo.value.code == 1
    assert "broken.md" in capsys.readouterr().err


def test_config_error_exits(garden, capsys):
    config = write_config(garden, 'link_resolution = "fuzzy"')
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config)])
    assert excinfo.value.code == 1
    assert "link_resolution" in capsys.readouterr().err

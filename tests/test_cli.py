from pathlib import Path

from framesnap.cli import _build_config, _build_options, _ensure_command_prefix, parse_args
from framesnap.config import DEFAULT_TRUSTED_HOST_SUFFIX


def test_bare_url_defaults_to_export():
    assert _ensure_command_prefix(["https://x.example.com"], ["export", "archive"]) == (
        "export",
        "https://x.example.com",
    )
    assert _ensure_command_prefix(["archive", "u"], ["export", "archive"]) == ["archive", "u"]


def test_export_arguments():
    args = parse_args(
        [
            "https://chat.example.com/c/1",
            "--keep-scripts",
            "--fonts",
            "all",
            "--output",
            "out",
            "--resolve-timeout",
            "3",
        ]
    )
    assert args.command == "export"
    assert args.keep_scripts is True
    assert args.fonts == "all"
    assert args.trusted_host == DEFAULT_TRUSTED_HOST_SUFFIX

    config = _build_config(args)
    assert config.output_root == Path("out").resolve()
    assert config.resolve_timeout == 3.0


def test_interaction_freeze_is_tri_state():
    url = "https://chat.example.com/c/1"
    assert _build_options(parse_args([url])).disable_interactions is True
    assert _build_options(parse_args([url, "--keep-scripts"])).disable_interactions is False
    frozen = _build_options(parse_args([url, "--keep-scripts", "--freeze-interactions"]))
    assert frozen.keep_scripts is True
    assert frozen.disable_interactions is True
    assert _build_options(parse_args([url, "--allow-interactions"])).disable_interactions is False


def test_archive_arguments():
    args = parse_args(["archive", "https://chat.example.com/c/1", "--prefix", "page"])
    assert args.command == "archive"
    config = _build_config(args)
    assert config.filename_prefix == "page"
    assert config.trusted_host_suffix == DEFAULT_TRUSTED_HOST_SUFFIX

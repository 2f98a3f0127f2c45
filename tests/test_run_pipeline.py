import matplotlib.pyplot as plt
import pytest
from click.testing import CliRunner

from ops.run_pipeline import ConfigContext, ConfigOverride, cli


@pytest.fixture
def base_args(project_root, tmp_path):
    return [
        "--config-file",
        str(project_root / "ops" / "config.yaml"),
        "--output",
        str(tmp_path / "cli.png"),
        "--config",
        f"output_files.normalized_csv={tmp_path / 'normalized.csv'}",
        "--config",
        "visualization.width_px=400",
        "--config",
        "visualization.height_px=300",
        "--config",
        "visualization.map_dpi=100",
    ]


def test_cli_renders_sample_map(base_args, tmp_path):
    result = CliRunner().invoke(cli, base_args + ["--palette", "Blues", "--reverse-scale"])

    assert result.exit_code == 0, result.output
    assert str(tmp_path / "cli.png") in result.output
    assert plt.imread(tmp_path / "cli.png").shape[:2] == (300, 400)
    assert (tmp_path / "normalized.csv").exists()


def test_cli_dry_run_writes_nothing(base_args, tmp_path):
    result = CliRunner().invoke(cli, base_args + ["--dry-run"])

    assert result.exit_code == 0, result.output
    assert not (tmp_path / "cli.png").exists()


def test_cli_missing_input_exits_with_error(base_args, tmp_path):
    result = CliRunner().invoke(cli, base_args + ["--tracts-csv", str(tmp_path / "missing.csv")])

    assert result.exit_code == 1
    assert not (tmp_path / "cli.png").exists()
    assert not (tmp_path / "normalized.csv").exists()


def test_cli_bad_metric_exits_with_error(base_args, tmp_path):
    result = CliRunner().invoke(cli, base_args + ["--metric", "est_elevated"])

    assert result.exit_code == 1
    assert not (tmp_path / "cli.png").exists()


def test_cli_config_without_inputs_exits_with_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("project_name: Empty\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config-file", str(config_path), "--output", str(tmp_path / "cli.png")])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert not (tmp_path / "cli.png").exists()


def test_validate_command(base_args, tmp_path):
    runner = CliRunner()

    assert runner.invoke(cli, base_args + ["validate"]).exit_code == 0
    missing = runner.invoke(cli, base_args + ["--tracts-geometry", str(tmp_path / "none.shp"), "validate"])
    assert missing.exit_code == 1


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("visualization.width_px=3200", ("visualization.width_px", 3200)),
        ("visualization.outline_width=0.5", ("visualization.outline_width", 0.5)),
        ("visualization.vmin=-5", ("visualization.vmin", -5)),
        ("geometry.layer=null", ("geometry.layer", None)),
        ("map.title=Lead = risk", ("map.title", "Lead = risk")),
        ("flag=True", ("flag", True)),
    ],
)
def test_config_override_parsing(raw, expected):
    assert ConfigOverride().convert(raw, None, None) == expected


def test_config_context_builds_nested_overrides(project_root):
    ctx = ConfigContext(str(project_root / "ops" / "config.yaml"))
    ctx.add_override("visualization.direction", "reversed")
    ctx.add_override("visualization.palette", "Greens")

    config = ctx.get_config()

    assert config.get_visualization_setting("direction") == "reversed"
    assert config.get_visualization_setting("palette") == "Greens"
    assert config.get_visualization_setting("metric") == "elevated_percent"

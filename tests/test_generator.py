import pytest

from ivrflow.errors import TemplateNotFound
from ivrflow.generator import generate_graph_from_template, list_templates, save_graph_yaml
from ivrflow.serializer import load_graph
from ivrflow.validator import validate


def test_bundled_templates():
    assert list_templates() == ["after_hours", "language_select", "main_menu"]


@pytest.mark.parametrize("name", ["after_hours", "language_select", "main_menu"])
def test_templates_are_clean(name):
    report = validate(generate_graph_from_template(name))
    assert report.errors == []
    assert report.warnings == []


def test_template_names_are_forgiving():
    assert generate_graph_from_template("Main-Menu") == generate_graph_from_template("main_menu")


def test_unknown_template():
    with pytest.raises(TemplateNotFound) as exc:
        generate_graph_from_template("fax_back")
    assert "main_menu" in str(exc.value)


def test_generate_and_validate(tmp_path):
    graph = generate_graph_from_template("language_select")
    path = save_graph_yaml(graph, tmp_path / "lang")
    assert path.suffix == ".yaml"
    loaded = load_graph(path)
    assert loaded == graph
    assert validate(loaded).compilable

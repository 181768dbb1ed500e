from importlib.resources import files
from pathlib import Path
from typing import List, Union

import yaml

from .errors import TemplateNotFound
from .ir import Graph
from .serializer import deserialize, save_graph


def list_templates() -> List[str]:
    pkg = files('ivrflow.templates')
    return sorted(p.name[:-len(".yaml")] for p in pkg.iterdir() if p.name.endswith(".yaml"))


def _load_template_yaml(name: str) -> str:
    pkg = files('ivrflow.templates')
    return (pkg / f"{name}.yaml").read_text()


def generate_graph_from_template(name: str) -> Graph:
    key = name.lower().replace('-', '_')
    available = list_templates()
    if key not in available:
        raise TemplateNotFound(name, available)
    data = yaml.safe_load(_load_template_yaml(key))
    return deserialize(data)


def save_graph_yaml(graph: Graph, path: Union[str, Path]) -> Path:
    return save_graph(graph, Path(path).with_suffix(".yaml"))

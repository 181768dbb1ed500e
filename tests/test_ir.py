import pytest

from ivrflow.errors import (
    DuplicateBranch,
    DuplicateNode,
    InvalidBlockType,
    InvalidConfig,
    NodeNotFound,
)
from ivrflow.ir import UNKNOWN, BlockType, Graph, KeyConfig, PromptConfig


def test_add_node_assigns_id_name_and_variant_config():
    g = Graph()
    node = g.add_node("prompt", {"message": "Hi", "audioUrl": "https://example.com/hi.wav"})
    assert len(node.id) == 32
    assert node.name == "prompt-1"
    assert isinstance(node.config, PromptConfig)
    assert node.config.audio_url == "https://example.com/hi.wav"
    second = g.add_node(BlockType.HANGUP)
    assert second.name == "hangup-2"
    assert second.id != node.id


def test_add_node_rejects_unknown_block_type():
    g = Graph()
    with pytest.raises(InvalidBlockType):
        g.add_node("fax")
    with pytest.raises(InvalidBlockType):
        g.add_node(UNKNOWN)
    assert g.nodes == ()
    assert g.version == 0


def test_add_node_rejects_reused_id():
    g = Graph()
    g.add_node("hangup", node_id="h")
    with pytest.raises(DuplicateNode):
        g.add_node("hangup", node_id="h")


def test_fields_of_other_block_types_are_dropped():
    g = Graph()
    node = g.add_node("hangup", {"destination": "SIP/100", "summary": "bye"})
    assert node.config.to_document() == {}


def test_options_keys_become_strings():
    g = Graph()
    node = g.add_node("key", {"options": {1: "Sales", 2: "Support"}})
    assert isinstance(node.config, KeyConfig)
    assert node.options == {"1": "Sales", "2": "Support"}


def test_wrong_field_type_is_invalid_config():
    g = Graph()
    with pytest.raises(InvalidConfig):
        g.add_node("key", {"options": "1:Sales,2:Support"})


def test_update_node_config_merges_partial_fields():
    g = Graph()
    node = g.add_node("prompt", {"message": "Hi"})
    updated = g.update_node_config(node.id, {"audioUrl": "hi.wav", "summary": "greeting"})
    assert updated.config.message == "Hi"
    assert updated.config.audio_url == "hi.wav"
    assert g.get_node(node.id) == updated

    cleared = g.update_node_config(node.id, {"summary": "  "})
    assert cleared.config.summary is None
    assert "summary" not in cleared.config.to_document()


def test_update_node_config_does_not_check_completeness():
    g = Graph()
    node = g.add_node("transfer", {"destination": "SIP/1"})
    updated = g.update_node_config(node.id, {"destination": None})
    assert updated.config.missing_fields() == ["destination"]


def test_update_missing_node():
    with pytest.raises(NodeNotFound):
        Graph().update_node_config("nope", {"message": "x"})


def test_connect_checks_endpoints_and_branch_uniqueness(menu_graph):
    with pytest.raises(NodeNotFound):
        menu_graph.connect("K1", "ghost", "3")
    with pytest.raises(NodeNotFound):
        menu_graph.connect("ghost", "K1")
    with pytest.raises(DuplicateBranch):
        menu_graph.connect("K1", "P1", "1")
    with pytest.raises(DuplicateBranch):
        menu_graph.connect("P1", "Hangup")


def test_connect_derives_edge_ids(menu_graph):
    assert [e.id for e in menu_graph.edges] == ["e-P1-K1", "e-K1-1-Transfer", "e-K1-2-Hangup"]
    edge = menu_graph.connect("K1", "P1", 9)
    assert edge.source_handle == "9"
    assert edge.id == "e-K1-9-P1"


def test_remove_node_cascades(menu_graph):
    menu_graph.mark_start("K1")
    menu_graph.remove_node("K1")
    assert "K1" not in menu_graph.node_map()
    assert all("K1" not in (e.source, e.target) for e in menu_graph.edges)
    assert menu_graph.edges == ()
    assert menu_graph.start is None


def test_remove_missing_node_is_a_noop(menu_graph):
    before = menu_graph.version
    menu_graph.remove_node("ghost")
    assert menu_graph.version == before


def test_disconnect(menu_graph):
    menu_graph.disconnect("e-K1-2-Hangup")
    assert [e.id for e in menu_graph.edges] == ["e-P1-K1", "e-K1-1-Transfer"]
    version = menu_graph.version
    menu_graph.disconnect("e-K1-2-Hangup")
    assert menu_graph.version == version


def test_every_mutation_bumps_version():
    g = Graph()
    a = g.add_node("prompt", {"message": "Hi"})
    b = g.add_node("hangup")
    stamps = [g.version]
    edge = g.connect(a.id, b.id)
    stamps.append(g.version)
    g.update_node_config(a.id, {"message": "Hello"})
    stamps.append(g.version)
    g.rename_node(a.id, "Greeting")
    stamps.append(g.version)
    g.move_node(a.id, {"x": 10, "y": 20})
    stamps.append(g.version)
    g.mark_start(a.id)
    stamps.append(g.version)
    g.disconnect(edge.id)
    stamps.append(g.version)
    g.remove_node(b.id)
    stamps.append(g.version)
    assert stamps == sorted(set(stamps))
    assert g.get_node(a.id).position == {"x": 10, "y": 20}


def test_equality_ignores_version(menu_graph):
    other = Graph(menu_graph.nodes, menu_graph.edges, menu_graph.start)
    assert other.version == 0
    assert other == menu_graph
    other.rename_node("P1", "Greeting")
    assert other != menu_graph


def test_callers_cannot_mutate_internals(menu_graph):
    nodes = menu_graph.node_map()
    nodes.pop("P1")
    assert menu_graph.has_node("P1")
    with pytest.raises(Exception):
        menu_graph.get_node("P1").name = "changed"


def test_start_resolution(menu_graph):
    assert menu_graph.start_candidates() == ["P1"]
    assert menu_graph.resolve_start() == "P1"
    menu_graph.mark_start("K1")
    assert menu_graph.resolve_start() == "K1"
    menu_graph.clear_start()
    assert menu_graph.resolve_start() == "P1"

    lone = Graph()
    lone.add_node("hangup", node_id="only")
    assert lone.resolve_start() == "only"

    menu_graph.connect("Hangup", "P1")
    assert menu_graph.start_candidates() == []
    assert menu_graph.resolve_start() == "P1"

    isolated = Graph()
    isolated.add_node("prompt", {"message": "a"})
    isolated.add_node("hangup")
    assert isolated.resolve_start() is None


def test_replace_with_swaps_content(menu_graph):
    g = Graph()
    g.add_node("hangup")
    version = g.version
    g.replace_with(menu_graph)
    assert g == menu_graph
    assert g.version == version + 1

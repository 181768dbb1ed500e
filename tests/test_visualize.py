from ivrflow.ir import Graph
from ivrflow.visualize import ascii_plan


def test_plan_follows_keypad_order(menu_graph):
    menu_graph.add_node("hangup", node_id="stray", name="Stray")
    lines = ascii_plan(menu_graph).splitlines()
    assert lines[0] == "# ASCII Plan (depth-first from 'prompt-1')"
    assert lines[1] == "01. prompt-1 [prompt]  id=P1"
    assert "    └─▶ TransferNode  (on 1)" in lines
    assert lines.index("    └─▶ TransferNode  (on 1)") < lines.index("    └─▶ HangupNode  (on 2)")
    assert lines[-2:] == ["# Unreachable", "  - Stray [hangup]  id=stray"]


def test_unconnected_options_are_marked(menu_graph):
    menu_graph.remove_node("Hangup")
    assert "    └─✗ HangupNode  (on 2, not connected)" in ascii_plan(menu_graph)


def test_no_start_lists_insertion_order():
    g = Graph()
    g.add_node("prompt", {"message": "a"}, node_id="p")
    g.add_node("hangup", node_id="h")
    text = ascii_plan(g)
    assert text.startswith("# ASCII Plan (no unique start node; insertion order)")
